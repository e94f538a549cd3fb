from huffzip import compress, main


def test_compress_and_decompress_files(tmp_path):
  source = tmp_path / 'input.bin'
  packed = tmp_path / 'input.bin.huff'
  restored = tmp_path / 'output.bin'
  source.write_bytes(b'Hello World' * 20)

  assert main(['compress', str(source), '-o', str(packed)]) == 0
  assert packed.read_bytes() == compress(b'Hello World' * 20)

  assert main(['decompress', str(packed), '-o', str(restored)]) == 0
  assert restored.read_bytes() == source.read_bytes()


def test_verify(tmp_path, capsys):
  source = tmp_path / 'input.bin'
  source.write_bytes(b'AABC')

  assert main(['verify', str(source)]) == 0
  assert 'round trip ok' in capsys.readouterr().out


def test_decompress_corrupt_file_fails(tmp_path):
  packed = tmp_path / 'bad.huff'
  restored = tmp_path / 'out.bin'
  packed.write_bytes(compress(b'AABC')[:-1])

  assert main(['decompress', str(packed), '-o', str(restored)]) == 1
  assert not restored.exists()


def test_missing_input_fails(tmp_path):
  assert main(['compress', str(tmp_path / 'missing.bin'), '-o', str(tmp_path / 'out')]) == 1
