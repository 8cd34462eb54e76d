from objdis.config import DisassemblyOptions
from objdis.livevars import LiveVariablePrinter
from objdis.model import SectionedAddress
from objdis.printers import (select_pretty_printer, PrettyPrinter, HexagonPrettyPrinter, AMDGCNPrettyPrinter,
                             BPFPrettyPrinter)

from fakes import FakeInstruction, FakePrinter, make_object, make_output, make_relocation, undefined_symbol


class PacketPrinter:
    "Returns a canned packet text, the way an instruction printer for Hexagon would."
    def __init__(self, text):
        self.text = text

    def print_inst(self, inst, address, labels=None):
        return self.text


def print_one(printer, ip, inst, data, address, relocs=None, annot=''):
    out, stream = make_output()
    printer.print_inst(ip, inst, data, SectionedAddress(address, 1), out, annot, None, make_object(), relocs,
                       LiveVariablePrinter())
    return stream.getvalue()


def test_select_pretty_printer():
    options = DisassemblyOptions()
    assert type(select_pretty_printer('hexagon', options)) is HexagonPrettyPrinter
    assert type(select_pretty_printer('amdgcn', options)) is AMDGCNPrettyPrinter
    assert type(select_pretty_printer('bpfel', options)) is BPFPrettyPrinter
    assert type(select_pretty_printer('bpfeb', options)) is BPFPrettyPrinter
    assert type(select_pretty_printer('x86_64', options, True)) is PrettyPrinter
    assert select_pretty_printer('x86_64', options, True).is_x86


def test_generic_layout():
    printer = PrettyPrinter(DisassemblyOptions())
    assert print_one(printer, FakePrinter(), FakeInstruction('mov', 'r0, r1'), b'\x01\x10\xa0\xe1', 0x10) == (
        '      10: 01 10 a0 e1' + ' ' * 2 + '\tmov\tr0, r1')


def test_generic_layout_long_encoding():
    printer = PrettyPrinter(DisassemblyOptions(), True)
    assert print_one(printer, FakePrinter(), FakeInstruction('nop'), b'\x90' * 12, 0) == (
        '       0: ' + '90 ' * 11 + '90' + ' ' * 2 + '\tnop')


def test_generic_unknown():
    printer = PrettyPrinter(DisassemblyOptions(show_raw_insn=False))
    assert print_one(printer, FakePrinter(), None, b'\xff', 0x20) == '      20:' + ' ' * 6 + '\t<unknown>'


def test_bpf():
    printer = BPFPrettyPrinter(DisassemblyOptions())
    data = b'\x95\x00\x00\x00\x00\x00\x00\x00'
    assert print_one(printer, FakePrinter(), FakeInstruction('exit'), data, 16) == (
        '       2:\t95 00 00 00 00 00 00 00\texit')
    assert print_one(printer, FakePrinter(), None, data, 0) == '       0:\t95 00 00 00 00 00 00 00\t<unknown>'


def test_bpf_without_address_and_bytes():
    printer = BPFPrettyPrinter(DisassemblyOptions(leading_addr=False, show_raw_insn=False))
    assert print_one(printer, FakePrinter(), FakeInstruction('exit'), b'\x95' + b'\0' * 7, 16) == '\texit'


def test_amdgcn():
    printer = AMDGCNPrettyPrinter(DisassemblyOptions())
    assert print_one(printer, FakePrinter(), FakeInstruction('s_nop', '0'), b'\x00\x00\x80\xbf', 0) == (
        '\ts_nop\t0'.ljust(60) + '// 000000000000: BF800000')


def test_amdgcn_annotation():
    printer = AMDGCNPrettyPrinter(DisassemblyOptions())
    result = print_one(printer, FakePrinter(), FakeInstruction('s_nop', '0'), b'\x00\x00\x80\xbf', 0, annot='note')
    assert result.endswith('BF800000 // note')


def test_amdgcn_unknown_words():
    printer = AMDGCNPrettyPrinter(DisassemblyOptions())
    assert print_one(printer, FakePrinter(), None, b'\x00\x00\x80\xbf', 4) == (
        '\t.long 0xbf800000 ' + ' ' * 42 + '// 000000000004: BF800000')


def test_amdgcn_unknown_bytes():
    printer = AMDGCNPrettyPrinter(DisassemblyOptions())
    assert print_one(printer, FakePrinter(), None, b'\x01\x02', 8) == (
        '\t.byte 0x01, 0x02' + ' ' * 43 + '// 000000000008: 01 02')


def test_hexagon_packet():
    printer = HexagonPrettyPrinter(DisassemblyOptions())
    data = b'\x01\x00\x00\x00\x02\x00\x00\x00'
    assert print_one(printer, PacketPrinter('A\nB\n'), FakeInstruction('packet'), data, 0) == (
        '       0:\t01 00 00 00\t00000001 { A\n'
        '       4:\t02 00 00 00\t00000002   B } ')


def test_hexagon_duplex_and_bundle_attributes():
    printer = HexagonPrettyPrinter(DisassemblyOptions())
    data = b'\x01\x00\x00\x00'
    assert print_one(printer, PacketPrinter('X\vY\n:endloop0'), FakeInstruction('packet'), data, 0) == (
        '       0:\t01 00 00 00\t00000001 { X; Y } :endloop0')


def test_hexagon_relocation_inside_packet():
    printer = HexagonPrettyPrinter(DisassemblyOptions())
    data = b'\x01\x00\x00\x00\x02\x00\x00\x00'
    relocs = [make_relocation(4, 'R_HEX_B22_PCREL', undefined_symbol('callee'))]
    assert print_one(printer, PacketPrinter('A\nB\n'), FakeInstruction('packet'), data, 0, relocs) == (
        '       0:\t01 00 00 00\t00000001 { A\n'
        '       4:\t02 00 00 00\t00000002   B } '
        '\t\t\t00000004:  R_HEX_B22_PCREL\tcallee')


def test_hexagon_unknown():
    printer = HexagonPrettyPrinter(DisassemblyOptions())
    assert print_one(printer, PacketPrinter(''), None, b'\x01\x00\x00\x00', 0) == '       0:\t01 00 00 00\t00000001 <unknown>'
