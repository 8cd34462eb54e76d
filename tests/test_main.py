import hashlib
import logging

import pytest

from objdis import VERSION_STRING
from objdis.main import main, make_parser, options_from_args, int_arg, comma_separated
from objdis.model import UINT64_MAX

from fakes import build_elf, build_sample_elf, sample_listing, SAMPLE_TEXT, SAMPLE_SYMBOLS


@pytest.fixture(autouse=True)
def restore_logging():
    handlers = list(logging.root.handlers)
    level = logging.root.level
    yield
    logging.root.handlers[:] = handlers
    logging.root.setLevel(level)


def run(argv):
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    return excinfo.value.code


def parse(argv):
    return options_from_args(make_parser().parse_args(argv))


def test_int_arg():
    assert int_arg('16') == 16
    assert int_arg('0x10') == 16
    assert int_arg('0') == 0
    with pytest.raises(Exception) as excinfo:
        int_arg('-4')
    assert "expected a non-negative integer, but got '-4'" in str(excinfo.value)


def test_bad_address_argument(capsys):
    assert run(['-d', '--start-address', 'xyz', 'a.o']) == 2
    assert "expected a non-negative integer, but got 'xyz'" in capsys.readouterr().err


def test_comma_separated():
    assert comma_separated(['a,b', 'c', '', 'd,,e']) == ['a', 'b', 'c', 'd', 'e']


def test_option_defaults():
    options = parse(['x.o'])
    assert not options.disassemble
    assert options.start_address == 0
    assert options.stop_address == UINT64_MAX
    assert not options.has_start_address
    assert options.debug_vars is None
    assert options.debug_vars_indent == 40


@pytest.mark.parametrize('flag', ['-d', '-D', '-S', '-l', '--disassemble-symbols=main'])
def test_flags_imply_disassembly(flag):
    assert parse([flag, 'x.o']).disassemble


def test_option_values():
    options = parse(['-D', '-z', '-r', '-j', '.text', '-j', '.data', '--start-address', '0x10',
                     '--stop-address=32', '--adjust-vma', '0x1000', '--no-show-raw-insn', '--no-leading-addr',
                     '--symbolize-operands', '--debug-vars', '--debug-vars-indent', '8', '--prefix', '/src/',
                     '--prefix-strip', '2', '--disassemble-symbols', 'a,b', '--disassemble-symbols', 'c',
                     '--triple', 'thumbv7m-none-eabi', 'x.o'])
    assert options.disassemble_all and options.disassemble_zeroes and options.relocations
    assert options.filter_sections == ('.text', '.data')
    assert (options.start_address, options.stop_address) == (0x10, 32)
    assert options.has_start_address and options.has_stop_address
    assert options.adjust_vma == 0x1000
    assert not options.show_raw_insn
    assert not options.leading_addr
    assert options.symbolize_operands
    assert options.debug_vars == 'unicode'
    assert options.debug_vars_indent == 8
    assert options.prefix == '/src'
    assert options.prefix_strip == 2
    assert options.disassemble_symbols == frozenset(['a', 'b', 'c'])
    assert options.triple == 'thumbv7m-none-eabi'


@pytest.mark.parametrize('flag', ['-C', '--demangle'])
def test_demangle_flag(flag):
    assert parse([flag, '-d', 'x.o']).demangle
    assert not parse(['-d', 'x.o']).demangle


def test_debug_vars_ascii():
    assert parse(['--debug-vars=ascii', 'x.o']).debug_vars == 'ascii'


def test_version(capsys):
    assert run(['--version']) == 0
    assert VERSION_STRING in capsys.readouterr().out


def test_no_action_prints_help(capsys):
    assert run(['x.o']) == 2
    assert 'usage:' in capsys.readouterr().out


def test_start_not_below_stop(caplog):
    assert run(['-d', '--start-address', '0x10', '--stop-address', '0x10', 'x.o']) == 1
    assert "start address should be less than stop address" in caplog.text


def test_disassemble_file(tmp_path, capsys):
    path = build_sample_elf(tmp_path / 'sample.o')
    assert run(['-d', '-r', path]) == 0
    assert capsys.readouterr().out == sample_listing(path)


def test_disassemble_without_relocations(tmp_path, capsys):
    path = build_sample_elf(tmp_path / 'sample.o')
    assert run(['-d', path]) == 0
    assert capsys.readouterr().out == sample_listing(path, relocations=False)


def test_relocations_only(tmp_path, capsys):
    path = build_sample_elf(tmp_path / 'sample.o')
    assert run(['-r', path]) == 0
    assert capsys.readouterr().out == (
        '\n{}:\tfile format elf64-x86-64\n\n'.format(path) +
        'RELOCATION RECORDS FOR [.text]:\n' +
        'OFFSET'.ljust(16) + ' ' + 'TYPE'.ljust(24) + ' VALUE\n' +
        '0000000000000002 ' + 'R_X86_64_PLT32'.ljust(24) + ' foo-0x4\n' +
        '\n')


def test_several_inputs(tmp_path, capsys):
    first = build_sample_elf(tmp_path / 'first.o')
    second = build_sample_elf(tmp_path / 'second.o')
    assert run(['-d', first, second]) == 0
    assert capsys.readouterr().out == (sample_listing(first, relocations=False) +
                                       sample_listing(second, relocations=False))


def test_missing_file(tmp_path, capsys, caplog):
    path = str(tmp_path / 'nope.o')
    assert run(['-d', path]) == 1
    assert "'{}': No such file or directory".format(path) in caplog.text
    assert capsys.readouterr().out == ''


def test_bad_file_does_not_stop_the_run(tmp_path, capsys, caplog):
    bad = tmp_path / 'bad.o'
    bad.write_bytes(b'this is not an object file at all')
    good = build_sample_elf(tmp_path / 'good.o')
    assert run(['-d', str(bad), good]) == 1
    assert "'{}': The file was not recognized as a valid object file".format(bad) in caplog.text
    assert capsys.readouterr().out == sample_listing(good, relocations=False)


def test_archive_hint(tmp_path, caplog):
    path = tmp_path / 'libfoo.a'
    path.write_bytes(b'!<arch>\n' + b'\0' * 64)
    assert run(['-d', str(path)]) == 1
    assert "may be a library (.a)" in caplog.text


def test_unknown_machine(tmp_path, caplog):
    path = build_elf(tmp_path / 'odd.o', SAMPLE_TEXT, SAMPLE_SYMBOLS, machine=0x1234)
    assert run(['-d', path]) == 1
    assert "can't find target" in caplog.text


def test_unmatched_section_warning(tmp_path, caplog):
    path = build_sample_elf(tmp_path / 'sample.o')
    assert run(['-d', '-j', '.nope', path]) == 0
    assert "section '.nope' mentioned in a -j/--section option, but not found in any input file" in caplog.text


def test_disassemble_symbols_warns_on_missing(tmp_path, capsys, caplog):
    path = build_sample_elf(tmp_path / 'sample.o')
    assert run(['--disassemble-symbols=main,absent', path]) == 0
    assert '<main>:' in capsys.readouterr().out
    assert "'{}': failed to disassemble missing symbol absent".format(path) in caplog.text


def test_hash(tmp_path, capsys):
    path = build_sample_elf(tmp_path / 'sample.o')
    with open(path, 'rb') as f:
        digest = hashlib.sha256(f.read()).hexdigest()
    assert run(['--hash', path]) == 0
    assert capsys.readouterr().out == 'filehash: {}\n'.format(digest)


def test_fixups_add_symbols(tmp_path, capsys):
    path = build_sample_elf(tmp_path / 'sample.o')
    fixups = tmp_path / 'fixups.yaml'
    fixups.write_text('filename: sample.o\nsymbols:\n  - .text+0x1: do_call STT_FUNC\n')
    assert run(['-d', '--fixups', str(fixups), path]) == 0
    out = capsys.readouterr().out
    assert '\n0000000000000001 <do_call>:\n' in out
    assert ' <do_call+0x5>\n' in out


def test_fixups_from_environment(tmp_path, capsys, monkeypatch):
    path = build_sample_elf(tmp_path / 'sample.o')
    fixups = tmp_path / 'fixups.yaml'
    fixups.write_text('symbols:\n  - .text+0x6: tail\n')
    monkeypatch.setenv('OBJDIS_FIXUPS', str(fixups))
    assert run(['-d', path]) == 0
    assert '\n0000000000000006 <tail>:\n' in capsys.readouterr().out
