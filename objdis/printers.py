import struct

from .livevars import inst_start_column
from .relocs import print_relocation
from .util import dump_bytes


class PrettyPrinter:
    def __init__(self, options, is_x86=False):
        self.options = options
        self.is_x86 = is_x86

    def print_source(self, sp, out, address, filename, lvp, delimiter='; '):
        if sp is not None and (self.options.print_source or self.options.print_lines):
            sp.print_source_line(out, address, filename, lvp, delimiter)

    def print_inst(self, ip, inst, data, address, out, annot, sp, objfile, relocs, lvp, labels=None):
        opts = self.options
        self.print_source(sp, out, address, objfile.filename, lvp)
        lvp.print_between_insts(out, False)

        lead = ''
        if opts.leading_addr:
            lead += '{:8x}:'.format(address.address)
        if opts.show_raw_insn:
            lead += ' ' + dump_bytes(data)
        # The instruction text starts with a tab, so pad to one column
        # before the tab stop.
        tab_stop = inst_start_column(opts, self.is_x86)
        col = len(lead)
        if col < tab_stop - 1:
            lead += ' ' * (tab_stop - 1 - col)
        else:
            lead += ' ' * (7 - col % 8)
        out.write(lead)

        if inst is not None:
            # x86 PC-relative operands are relative to the next instruction.
            pc = address.address + (len(data) if self.is_x86 else 0)
            out.write(ip.print_inst(inst, pc, labels))
        else:
            out.write('\t<unknown>')


def _split(text, sep):
    head, found, tail = text.partition(sep)
    return head, tail


def _rsplit(text, sep):
    head, found, tail = text.rpartition(sep)
    if not found:
        return text, ''
    return head, tail


class HexagonPrettyPrinter (PrettyPrinter):
    "Prints each instruction of a packet on its own line, the packet wrapped in braces."

    def print_lead(self, data, address, out):
        opcode = struct.unpack('<I', bytes(data[:4]).ljust(4, b'\0'))[0]
        if self.options.leading_addr:
            out.write('{:8x}:'.format(address))
        if self.options.show_raw_insn:
            out.write('\t' + dump_bytes(data[:4]))
            out.write('\t{:08x}'.format(opcode))

    def print_inst(self, ip, inst, data, address, out, annot, sp, objfile, relocs, lvp, labels=None):
        self.print_source(sp, out, address, objfile.filename, lvp, '')
        if inst is None:
            self.print_lead(data, address.address, out)
            out.write(' <unknown>')
            return
        contents = ip.print_inst(inst, address.address, labels)
        packet, bundle_attrs = _rsplit(contents, '\n')
        head, tail = _split(packet, '\n')
        preamble = ' { '
        separator = ''
        relocs = relocs or []
        rel_pos = 0
        addr = address.address
        while head:
            out.write(separator)
            separator = '\n'
            self.print_source(sp, out, address._replace(address=addr), objfile.filename, lvp, '')
            self.print_lead(data, addr, out)
            out.write(preamble)
            preamble = '   '
            duplex_first, duplex_second = _split(head, '\v')
            if duplex_second:
                out.write(duplex_first)
                out.write('; ')
                out.write(duplex_second)
            else:
                out.write(head)
            head, tail = _split(tail, '\n')
            if not head:
                out.write(' } ' + bundle_attrs)
            # Relocations go inline, right after the instruction they patch.
            while rel_pos < len(relocs) and relocs[rel_pos].offset <= addr:
                if relocs[rel_pos].offset == addr:
                    print_relocation(out, objfile, relocs[rel_pos], addr, False)
                    break
                rel_pos += 1
            data = data[4:]
            addr += 4


class AMDGCNPrettyPrinter (PrettyPrinter):
    def print_inst(self, ip, inst, data, address, out, annot, sp, objfile, relocs, lvp, labels=None):
        self.print_source(sp, out, address, objfile.filename, lvp)
        if inst is not None:
            out.write(ip.print_inst(inst, address.address, labels).ljust(60))
        elif len(data) >= 4:
            # Unrecognised encodings are most likely data.
            out.write('\t.long 0x{:08x} '.format(struct.unpack_from('<I', data)[0]))
            out.indent(42)
        else:
            out.write('\t.byte 0x{:02x}'.format(data[0]))
            for b in data[1:]:
                out.write(', 0x{:02x}'.format(b))
            out.indent(55 - 6 * len(data))

        out.write('// {:012X}:'.format(address.address))
        if len(data) >= 4:
            for i in range(len(data) // 4):
                out.write(' {:08X}'.format(struct.unpack_from('<I', data, i * 4)[0]))
        else:
            for b in data:
                out.write(' {:02X}'.format(b))
        if annot:
            out.write(' // ' + annot)


class BPFPrettyPrinter (PrettyPrinter):
    def print_inst(self, ip, inst, data, address, out, annot, sp, objfile, relocs, lvp, labels=None):
        self.print_source(sp, out, address, objfile.filename, lvp)
        if self.options.leading_addr:
            out.write('{:8d}:'.format(address.address // 8))
        if self.options.show_raw_insn:
            out.write('\t' + dump_bytes(data))
        if inst is not None:
            out.write(ip.print_inst(inst, address.address, labels))
        else:
            out.write('\t<unknown>')


PRETTY_PRINTERS = {
    'hexagon': HexagonPrettyPrinter,
    'amdgcn': AMDGCNPrettyPrinter,
    'bpfel': BPFPrettyPrinter,
    'bpfeb': BPFPrettyPrinter,
}


def select_pretty_printer(arch, options, is_x86=False):
    cls = PRETTY_PRINTERS.get(arch, PrettyPrinter)
    return cls(options, is_x86)
