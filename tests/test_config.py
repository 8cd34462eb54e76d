import hashlib
import textwrap

import pytest

from objdis.config import DisassemblyOptions, Fixups, same_file, file_digest, parse_addr
from objdis.model import STT_FUNC, STT_NOTYPE, UINT64_MAX

from fakes import make_object, add_text, add_section


def sample_object():
    objfile = make_object(relocatable=False)
    add_text(objfile, '.text', 0x100, b'\x90' * 0x20)
    add_section(objfile, '.data', 0x200, b'\0' * 0x10, alloc=True)
    return objfile


def write_fixups(tmp_path, text):
    path = tmp_path / 'fixups.yaml'
    path.write_text(textwrap.dedent(text))
    return str(path)


def test_option_defaults():
    options = DisassemblyOptions()
    assert not options.disassemble
    assert options.start_address == 0
    assert options.stop_address == UINT64_MAX
    assert options.show_raw_insn
    assert options.leading_addr
    assert options.debug_vars is None
    assert options.debug_vars_indent == 40
    assert options.filter_sections == ()


def test_parse_addr():
    objfile = sample_object()
    text, data = objfile.sections
    assert parse_addr(objfile, '.text+0x10') == (text, 0x110)
    assert parse_addr(objfile, '.text+0x20') == (text, 0x120)
    assert parse_addr(objfile, '.text') == (text, 0x100)
    assert parse_addr(objfile, '.data+4') == (data, 0x204)
    assert parse_addr(objfile, 0x205) == (data, 0x205)
    assert parse_addr(objfile, '0x108') == (text, 0x108)
    assert parse_addr(objfile, '0x300') == (None, 0x300)


@pytest.mark.parametrize('addrspec', ['.text+0x40', '.data-0x4', '.bogus+4', 'nonsense'])
def test_parse_addr_errors(addrspec):
    with pytest.raises(ValueError):
        parse_addr(sample_object(), addrspec)


def test_same_file():
    assert same_file('build/foo.o', 'foo.o')
    assert same_file('build/foo.o', 'build/foo.o')
    assert not same_file('build/xfoo.o', 'foo.o')
    assert not same_file('foo.o', 'build/foo.o')
    assert same_file('build/../foo.o', 'foo.o')


def test_file_digest(tmp_path):
    path = tmp_path / 'blob'
    path.write_bytes(b'\x7fELF' * 2000)
    assert file_digest(str(path)) == hashlib.sha256(b'\x7fELF' * 2000).hexdigest()


def test_fixups_by_filename(tmp_path):
    fixups_file = write_fixups(tmp_path, """\
        symbols:
          - 0x10: default_symbol
        ---
        filename: foo.o
        symbols:
          - .text+0x4: helper STT_FUNC
          - .text: start
        ---
        filename: other.o
        symbols:
          - .text: wrong
        """)
    fixups = Fixups.load_from_file(fixups_file, str(tmp_path / 'foo.o'))
    assert str(fixups) == 'foo.o'
    symbols = fixups.make_symbols(sample_object())
    assert [(s.name, s.address, s.type, s.section.name) for s in symbols] == [
        ('helper', 0x104, STT_FUNC, '.text'),
        ('start', 0x100, STT_NOTYPE, '.text'),
    ]


def test_fixups_longest_filename_wins(tmp_path):
    fixups_file = write_fixups(tmp_path, """\
        filename: foo.o
        symbols: []
        ---
        filename: build/foo.o
        symbols: []
        """)
    assert str(Fixups.load_from_file(fixups_file, 'build/foo.o')) == 'build/foo.o'


def test_fixups_by_hash(tmp_path):
    objpath = tmp_path / 'renamed.o'
    objpath.write_bytes(b'object contents')
    digest = hashlib.sha256(b'object contents').hexdigest()
    fixups_file = write_fixups(tmp_path, """\
        filename: renamed.o
        symbols: []
        ---
        filename: original.o
        filehash: {}
        symbols: []
        """.format(digest))
    fixups = Fixups.load_from_file(fixups_file, str(objpath))
    assert str(fixups) == 'original.o'


def test_fixups_default_and_no_match(tmp_path):
    fixups_file = write_fixups(tmp_path, """\
        filename: a.o
        ---
        symbols:
          - 0x10: anywhere
        """)
    assert str(Fixups.load_from_file(fixups_file, 'b.o')) == '(default)'

    fixups_file = write_fixups(tmp_path, """\
        filename: a.o
        """)
    assert Fixups.load_from_file(fixups_file, 'b.o') is None


def test_fixups_hash_beats_filename(tmp_path):
    objpath = tmp_path / 'foo.o'
    objpath.write_bytes(b'new build')
    fixups_file = write_fixups(tmp_path, """\
        filename: foo.o
        filehash: {}
        symbols: []
        ---
        symbols: []
        ---
        filename: foo.o
        symbols: []
        ---
        filehash: {}
        symbols: []
        """.format(hashlib.sha256(b'old build').hexdigest(), hashlib.sha256(b'new build').hexdigest()))
    fixups = Fixups.load_from_file(fixups_file, str(objpath))
    assert str(fixups) == hashlib.sha256(b'new build').hexdigest()


def test_fixups_stale_hash_is_not_used(tmp_path):
    objpath = tmp_path / 'foo.o'
    objpath.write_bytes(b'new build')
    fixups_file = write_fixups(tmp_path, """\
        filename: foo.o
        filehash: {}
        symbols: []
        ---
        symbols: []
        """.format(hashlib.sha256(b'old build').hexdigest()))
    assert str(Fixups.load_from_file(fixups_file, str(objpath))) == '(default)'


def test_fixups_ties_go_to_the_first_document(tmp_path):
    fixups_file = write_fixups(tmp_path, """\
        symbols:
          - 0x10: first
        ---
        symbols:
          - 0x20: second
        """)
    fixups = Fixups.load_from_file(fixups_file, 'x.o')
    assert fixups.symbols == [(0x10, 'first')]


def test_fixups_symbols_must_be_a_list(tmp_path, caplog):
    fixups_file = write_fixups(tmp_path, """\
        symbols: just_a_name
        """)
    assert Fixups.load_from_file(fixups_file, 'x.o').symbols == []
    assert "Manual symbol entry 'just_a_name' is not" in caplog.text


def test_malformed_fixups_are_skipped(tmp_path, caplog):
    fixups_file = write_fixups(tmp_path, """\
        - just a list
        ---
        symbols:
          - not a mapping
          - .text+0x2: ok
          - .nowhere+0x2: lost
          - .text+0x3:
        """)
    fixups = Fixups.load_from_file(fixups_file, 'x.o')
    assert 'fixups document 1 is not a mapping; skipped' in caplog.text
    symbols = fixups.make_symbols(sample_object())
    assert [s.name for s in symbols] == ['ok']
    assert "Manual symbol entry 'not a mapping' is not an 'ADDRESS: NAME [TYPE]' mapping" in caplog.text
    assert "Invalid address for symbol: '.nowhere+0x2'" in caplog.text
    assert "has no name" in caplog.text


def test_absolute_manual_symbol(tmp_path):
    fixups_file = write_fixups(tmp_path, """\
        symbols:
          - 0x8000: reset STT_FUNC
        """)
    symbols = Fixups.load_from_file(fixups_file, 'x.o').make_symbols(sample_object())
    assert [(s.name, s.address, s.section) for s in symbols] == [('reset', 0x8000, None)]
