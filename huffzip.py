#!/usr/bin/env python3
"""Static byte-oriented Huffman compressor.

Container layout (single unsigned bytes throughout):

  padding_bit_count
  total_code_count
  for each code length, ascending:
    count_of_this_length, length_value
    count_of_this_length x (symbol_byte, packed_code_byte)
  bit-packed payload, MSB first
"""
import argparse
import heapq
import logging
import struct
import sys

from bitarray import bitarray
from collections import Counter, namedtuple

log = logging.getLogger(__name__)

MAX_CODE_LENGTH = 8
ALPHABET_SIZE = 256

class HuffmanError(ValueError):
  """Base class for every codec failure."""

class EmptyInput(HuffmanError):
  pass

class UnsupportedCodeLength(HuffmanError):
  pass

class MalformedHeader(HuffmanError):
  pass

class TruncatedPayload(HuffmanError):
  pass

Leaf = namedtuple('Leaf', ('byte', 'count'))
Node = namedtuple('Node', ('left', 'right', 'count'))

TableRow = namedtuple('TableRow', ('byte', 'bits'))
Header = namedtuple('Header', ('padding', 'table', 'offset'))

def _bits(value=None):
  return bitarray(value, endian='big') if value is not None else bitarray(endian='big')

class BinPacker:
  def __init__(self):
    self.buffer = _bits()

  def bits(self, bits):
    self.buffer.extend(bits)

  def int8(self, int8):
    self.buffer.frombytes(struct.pack('B', int8))

  def pack(self):
    """Return the packed bytes and the number of zero bits used as fill."""
    buffer = self.buffer.copy()
    padding = buffer.fill()
    return buffer.tobytes(), padding

  def debug(self):
    packed, padding = self.pack()
    log.debug('packer holds %d bits, %d bytes packed, %d padding bits',
              len(self.buffer), len(packed), padding)

class BinUnpacker:
  def __init__(self, bytes):
    self.data = bytes
    self.offset = 0

  def int8(self):
    if self.offset >= len(self.data):
      raise MalformedHeader('header ends at byte {}'.format(self.offset))
    return self._unpack_format('B')

  def remaining(self):
    return self.data[self.offset:]

  def _unpack_format(self, format):
    length = struct.calcsize(format)
    value = struct.unpack_from(format, self.data, self.offset)[0]
    self.offset += length
    return value

def pack_bits(bits):
  packer = BinPacker()
  packer.bits(bits)
  return packer.pack()

def unpack_bits(data, padding):
  bits = _bits()
  bits.frombytes(bytes(data))

  if padding > len(bits):
    raise TruncatedPayload('{} padding bits but only {} payload bits'.format(padding, len(bits)))

  if padding:
    # the encoder only ever fills with zeros
    if bits[-padding:].any():
      raise TruncatedPayload('padding bits are not zero')
    del bits[-padding:]

  return bits

def count_frequencies(data):
  return Counter(data)

def build_tree(frequencies):
  """Merge the two lightest nodes until one root remains.

  Equal counts are resolved by queue arrival: symbols enter in ascending byte
  order, merged nodes after everything queued before them.
  """
  if not frequencies:
    raise EmptyInput('cannot build a tree without symbols')

  queue = []
  for order, byte in enumerate(sorted(frequencies)):
    queue.append((frequencies[byte], order, Leaf(byte=byte, count=frequencies[byte])))
  heapq.heapify(queue)

  order = len(queue)
  while len(queue) > 1:
    _, _, node1 = heapq.heappop(queue)
    _, _, node2 = heapq.heappop(queue)

    parent = Node(left=node1, right=node2, count=node1.count + node2.count)
    heapq.heappush(queue, (parent.count, order, parent))
    order += 1

  return queue[0][2]

def build_table(node, path=None):
  if path is None:
    if isinstance(node, Leaf):
      # a lone symbol still needs one bit per occurrence
      return [TableRow(node.byte, _bits('0'))]
    path = _bits()

  if isinstance(node, Node):
    return build_table(node.left, path=path + _bits('0')) + build_table(node.right, path=path + _bits('1'))

  if len(path) > MAX_CODE_LENGTH:
    raise UnsupportedCodeLength('byte ({}) needs a {} bit code, at most {} fit in the header'.format(
      node.byte, len(path), MAX_CODE_LENGTH))

  return [TableRow(node.byte, path)]

def sort_table(table):
  return sorted(table, key=lambda row: (len(row.bits), row.byte))

def encode(data, table):
  codes = dict(table)
  bits = _bits()

  for byte in data:
    try:
      bits.extend(codes[byte])
    except KeyError:
      raise ValueError('byte ({}) not found in table'.format(byte))

  return bits

def _count_byte(count):
  # 256 codes do not fit a byte, and an empty table is never written
  return count % ALPHABET_SIZE

def _count_value(int8):
  return int8 or ALPHABET_SIZE

def pack_table(table, packer):
  rows = sort_table(table)
  packer.int8(_count_byte(len(rows)))

  lengths = sorted(set(len(row.bits) for row in rows))
  for length in lengths:
    group = [row for row in rows if len(row.bits) == length]
    packer.int8(_count_byte(len(group)))
    packer.int8(length)

    for row in group:
      packer.int8(row.byte)
      code = row.bits.copy()
      code.fill()
      packer.bits(code)

def unpack_table(unpacker):
  table_length = _count_value(unpacker.int8())
  table = []

  while len(table) < table_length:
    count = _count_value(unpacker.int8())
    length = unpacker.int8()

    if not 1 <= length <= MAX_CODE_LENGTH:
      raise MalformedHeader('code length {} outside 1..{}'.format(length, MAX_CODE_LENGTH))
    if len(table) + count > table_length:
      raise MalformedHeader('header declares {} codes but groups hold more'.format(table_length))

    for _ in range(count):
      byte = unpacker.int8()
      code = _bits()
      code.frombytes(bytes([unpacker.int8()]))
      table.append(TableRow(byte, code[:length]))

  return table

def read_header(container):
  unpacker = BinUnpacker(container)

  padding = unpacker.int8()
  if padding > 7:
    raise MalformedHeader('padding of {} bits is not in 0..7'.format(padding))

  table = unpack_table(unpacker)
  return Header(padding=padding, table=table, offset=unpacker.offset)

SYMBOL = 'byte'

def build_trie(table):
  root = {}

  for row in table:
    node = root
    for bit in row.bits:
      if SYMBOL in node:
        raise MalformedHeader('code {} extends the code of byte ({})'.format(row.bits.to01(), node[SYMBOL]))
      node = node.setdefault(int(bit), {})

    if node:
      raise MalformedHeader('code {} for byte ({}) is not prefix free'.format(row.bits.to01(), row.byte))
    node[SYMBOL] = row.byte

  return root

def decode(bits, table):
  trie = build_trie(table)
  node = trie
  decoded = bytearray()

  for position, bit in enumerate(bits):
    node = node.get(int(bit))
    if node is None:
      raise TruncatedPayload('bits at position {} match no code'.format(position))

    if SYMBOL in node:
      decoded.append(node[SYMBOL])
      node = trie

  if node is not trie:
    raise TruncatedPayload('payload ends inside a code')

  return bytes(decoded)

def compress(original):
  if not original:
    log.debug('empty input, writing empty container')
    return b''

  frequencies = count_frequencies(original)
  tree = build_tree(frequencies)
  table = sort_table(build_table(tree))
  log.debug('%d symbols, code lengths %d..%d', len(table), len(table[0].bits), len(table[-1].bits))

  payload = encode(original, table)
  body, padding = pack_bits(payload)

  packer = BinPacker()
  packer.int8(padding)
  pack_table(table, packer)
  packer.debug()
  header, _ = packer.pack()

  log.debug('header %d bytes, payload %d bits + %d padding', len(header), len(payload), padding)
  return header + body

def decompress(compressed):
  if not compressed:
    return b''

  header = read_header(compressed)
  log.debug('%d codes, payload starts at byte %d, %d padding bits',
            len(header.table), header.offset, header.padding)

  bits = unpack_bits(compressed[header.offset:], header.padding)
  if not bits:
    raise TruncatedPayload('container holds a code table but no payload')

  return decode(bits, header.table)

def _read_input(path):
  if path == '-':
    return sys.stdin.buffer.read()
  with open(path, 'rb') as f:
    return f.read()

def _write_output(path, data):
  if path == '-':
    sys.stdout.buffer.write(data)
    sys.stdout.buffer.flush()
    return
  with open(path, 'wb') as f:
    f.write(data)

def _run_verify(path):
  original = _read_input(path)
  compressed = compress(original)
  restored = decompress(compressed)

  if restored != original:
    print('{}: round trip MISMATCH'.format(path))
    return 1

  print('{}: round trip ok ({} -> {} bytes)'.format(path, len(original), len(compressed)))
  return 0

def parse_args(argv=None):
  parser = argparse.ArgumentParser(prog='huffzip', description='Static Huffman compressor for byte streams')
  parser.add_argument('--verbose', '-v', action='store_true', help='log codec details to stderr')
  commands = parser.add_subparsers(dest='command', required=True)

  for name in ('compress', 'decompress'):
    command = commands.add_parser(name)
    command.add_argument('input', nargs='?', default='-', help='input file (default: stdin)')
    command.add_argument('-o', '--output', default='-', help='output file (default: stdout)')

  verify = commands.add_parser('verify', help='check that a file survives a round trip')
  verify.add_argument('input')

  return parser.parse_args(argv)

def main(argv=None):
  args = parse_args(argv)
  logging.basicConfig(
    level=logging.DEBUG if args.verbose else logging.INFO,
    format='%(levelname)s %(name)s: %(message)s',
    stream=sys.stderr,
  )

  try:
    if args.command == 'verify':
      return _run_verify(args.input)

    operation = compress if args.command == 'compress' else decompress
    _write_output(args.output, operation(_read_input(args.input)))
  except HuffmanError as e:
    log.error('%s failed: %s', args.command, e)
    return 1
  except OSError as e:
    log.error('i/o error: %s', e)
    return 1

  return 0

if __name__ == '__main__':
  sys.exit(main())
