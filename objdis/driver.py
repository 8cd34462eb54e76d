import struct

from elftools.common.exceptions import ELFError, DWARFError

from .livevars import LiveVariablePrinter, DEBUG_VARS_UNICODE, inst_start_column
from .model import SectionedAddress, STT_OBJECT, STT_COMMON
from .printers import select_pretty_printer
from .relocs import build_relocation_map, RelocationCursor, print_relocation, print_relocations
from .resolver import TargetResolver
from .source import SourcePrinter
from .symbols import SymbolIndex, get_mapping_symbol_kind
from .target import DECODE_FAIL, lookup_target
from .util import debug, report_warning, dump_bytes, format_hex, is_print, demangle


def has_mapping_symbols(objfile):
    return objfile.is_elf and objfile.arch in ('arm', 'aarch64')


def is_arm_elf(objfile):
    return objfile.is_elf and objfile.arch == 'arm'


def should_adjust_va(objfile, section):
    "--adjust-vma only applies to loadable ELF sections."
    return objfile.is_elf and section.alloc


def count_skippable_zero_bytes(data):
    n = 0
    while n < len(data) and not data[n]:
        n += 1
    if n < 8:
        return 0
    # Whole words only, so an instruction starting with a zero byte is kept.
    return n & ~3


def dump_elf_data(out, section_addr, index, end, data):
    "Hex and ASCII dump of data[index:end], 8 bytes per line."
    chars = []
    while index < end:
        if not chars:
            out.write('{:8x}:'.format(section_addr + index))
        byte = data[index]
        out.write(' {:02x}'.format(byte))
        chars.append(chr(byte) if is_print(byte) else '.')
        if index == end - 1 or len(chars) == 8:
            out.write(' ' * (3 * (8 - len(chars))) + ' ' * 9 + ''.join(chars) + '\n')
            chars = []
        index += 1


def dump_arm_elf_data(out, section_addr, index, end, data, little_endian=True):
    "One .word/.short/.byte line for data marked by a $d mapping symbol.  Returns its size."
    order = '<' if little_endian else '>'
    out.write('{:8x}:\t'.format(section_addr + index))
    if index + 4 <= end:
        out.write(dump_bytes(data[index:index + 4]))
        out.write('\t.word\t' + format_hex(struct.unpack_from(order + 'I', data, index)[0], 10))
        return 4
    if index + 2 <= end:
        out.write(dump_bytes(data[index:index + 2]))
        out.write('\t\t.short\t' + format_hex(struct.unpack_from(order + 'H', data, index)[0], 6))
        return 2
    out.write(dump_bytes(data[index:index + 1]))
    out.write('\t\t.byte\t' + format_hex(data[index], 4))
    return 1


def collect_local_branch_targets(data, analyzer, decoder, section_addr, start, end):
    """Pre-decodes [start, end) and names each in-range branch target L0, L1, ...

    Labels are numbered in the order the branches are found.
    """
    labels = {}
    if analyzer is None:
        return labels
    start += section_addr
    end += section_addr
    index = start
    while index < end:
        result = decoder.decode(data[index - section_addr:], index)
        size = result.size or 1
        if result.status != DECODE_FAIL:
            target = analyzer.evaluate_branch(result.instruction, index, size)
            if target is not None and start <= target < end and target not in labels:
                labels[target] = 'L{}'.format(len(labels))
        index += size
    return labels


def check_for_invalid_start_stop_address(objfile, options):
    "Warns when no loadable section overlaps the --start-address/--stop-address range."
    if not objfile.is_elf or objfile.relocatable:
        return
    start = options.start_address
    stop = options.stop_address
    for section in objfile.sections:
        if section.alloc and start < section.address + section.size and stop > section.address:
            return
    if not options.has_start_address:
        report_warning("no section has address less than 0x{:x} specified by --stop-address".format(stop), objfile.filename)
    elif not options.has_stop_address:
        report_warning("no section has address greater than or equal to 0x{:x} specified by --start-address".format(start), objfile.filename)
    else:
        report_warning("no section overlaps the range [0x{:x},0x{:x}) specified by --start-address/--stop-address".format(start, stop), objfile.filename)


class ObjectDisassembler:
    """Walks the kept sections symbol by symbol and, inside each symbol's range, instruction by instruction.

    Source lines, local branch labels, target annotations, inline relocations
    and the live variable columns are printed around every instruction.
    """
    def __init__(self, objfile, target, options, section_filter, manual_symbols=()):
        self.objfile = objfile
        self.target = target
        self.options = options
        self.section_filter = section_filter
        self.is64 = objfile.bytes_in_address > 4

        self.relocations = {}
        if options.relocations:
            self.relocations = build_relocation_map(objfile, section_filter)
        self.symbols = SymbolIndex(objfile).build(manual_symbols)
        self.resolver = TargetResolver(self.symbols, objfile.relocatable, options.demangle)

        self.pretty_printer = select_pretty_printer(target.arch, options, target.is_x86)
        indent = options.debug_vars_indent + inst_start_column(options, target.is_x86)
        self.lvp = LiveVariablePrinter(options.debug_vars or DEBUG_VARS_UNICODE, indent)
        self.source_printer = None
        if options.print_lines or options.print_source:
            self.source_printer = SourcePrinter(objfile, options)

        self.decoder = target.primary
        self.primary_is_thumb = is_arm_elf(objfile) and target.primary_is_thumb
        self.found_symbols = set()

    def load_debug_vars(self):
        dwarfinfo = None
        try:
            dwarfinfo = self.objfile.get_dwarf_info()
            if dwarfinfo is not None:
                self.lvp.load_dwarf(dwarfinfo, self.objfile.dwarf_machine_arch, self.objfile)
        except (ELFError, DWARFError) as e:
            report_warning("failed to parse debug information: {}".format(e), self.objfile.filename)
        debug(1, "{} live variable ranges loaded".format(len(self.lvp.variables)))

    def run(self, out):
        if self.options.debug_vars:
            self.load_debug_vars()
        for index, section in self.section_filter.iter_sections(self.objfile):
            self.disassemble_section(out, section)
        wanted = self.options.disassemble_symbols
        for name in sorted(set(wanted) - self.found_symbols):
            report_warning("failed to disassemble missing symbol {}".format(name), self.objfile.filename)

    def disassemble_section(self, out, section):
        options = self.options
        if not options.filter_sections and not options.disassemble_all and (not section.is_text or section.is_virtual):
            return
        if not section.size:
            return
        debug(1, "Disassembling section {!r}".format(section.name))

        mapping_symbols = ()
        if has_mapping_symbols(self.objfile):
            mapping_symbols = self.symbols.mapping_symbols(section)
        symbols = self.symbols.symbols_for_disassembly(section)

        section_addr = section.address
        vma_adjustment = options.adjust_vma if should_adjust_va(self.objfile, section) else 0
        relocations = self.relocations.get(section, [])
        cursor = RelocationCursor(relocations)
        printed_section = False

        for si, sym in enumerate(symbols):
            name = demangle(sym.name) if options.demangle else sym.name
            if options.disassemble_symbols and name not in options.disassemble_symbols:
                continue
            start = sym.address
            if start < section_addr or options.stop_address <= start:
                continue
            self.found_symbols.add(name)

            end = min(section_addr + section.size, options.stop_address)
            if si + 1 < len(symbols):
                end = min(end, symbols[si + 1].address)
            if start >= end or end <= options.start_address:
                continue
            start -= section_addr
            end -= section_addr

            if not printed_section:
                printed_section = True
                out.write('\nDisassembly of section ')
                if section.segment_name:
                    out.write(section.segment_name + ',')
                out.write(section.name + ':\n')

            out.write('\n')
            if options.leading_addr:
                out.write(('{:016x} ' if self.is64 else '{:08x} ').format(section_addr + start + vma_adjustment))
            out.write('<{}>:\n'.format(name))

            if section.is_virtual:
                out.write('...\n')
                continue

            index = start
            if section_addr < options.start_address:
                index = max(index, options.start_address - section_addr)
            self.disassemble_range(out, section, sym, symbols, index, end, vma_adjustment, mapping_symbols, cursor, relocations)

    def disassemble_range(self, out, section, sym, symbols, index, end, vma_adjustment, mapping_symbols, cursor, relocations):
        objfile = self.objfile
        options = self.options
        target = self.target
        section_addr = section.address
        data = section.data

        # Data symbols inside code are dumped, not decoded.
        if objfile.is_elf and not options.disassemble_all and section.is_text:
            if sym.type in (STT_OBJECT, STT_COMMON):
                dump_elf_data(out, section_addr, index, end, data)
                index = end

        check_arm_data = has_mapping_symbols(objfile) and sym.type != STT_OBJECT and not options.disassemble_all
        dump_arm_data = False

        labels = {}
        if options.symbolize_operands and target.is_x86:
            labels = collect_local_branch_targets(data, target.analyzer, self.decoder, section_addr, index, end)

        while index < end:
            if check_arm_data:
                kind = get_mapping_symbol_kind(mapping_symbols, index)
                dump_arm_data = kind == 'd'
                if target.secondary is not None:
                    if kind == 'a':
                        self.decoder = target.secondary if self.primary_is_thumb else target.primary
                    elif kind == 't':
                        self.decoder = target.primary if self.primary_is_thumb else target.secondary

            if dump_arm_data:
                size = dump_arm_elf_data(out, section_addr, index, end, data, objfile.little_endian)
            else:
                if not options.disassemble_zeroes:
                    max_offset = end - index
                    rel = cursor.peek()
                    if rel is not None and index <= rel.offset < end:
                        # Zero blocks patched by a relocation are decoded so
                        # the relocation can be shown.
                        max_offset = rel.offset - index
                    skip = count_skippable_zero_bytes(data[index:index + max_offset])
                    if skip:
                        out.write('\t\t...\n')
                        index += skip
                        continue

                label = labels.get(section_addr + index)
                if label is not None:
                    out.write('<{}>:\n'.format(label))

                size = self.print_instruction(out, section, index, end, vma_adjustment, symbols, relocations, labels)

            self.lvp.print_after_inst(out)
            out.write('\n')

            # Hexagon prints relocations inside its packets.
            if target.arch != 'hexagon':
                self.print_inline_relocations(out, section, cursor, index + size)

            index += size

    def print_instruction(self, out, section, index, end, vma_adjustment, symbols, relocations, labels):
        "Decodes and prints the instruction at 'index' (without ending the line).  Returns its size."
        target = self.target
        section_addr = section.address
        result = self.decoder.decode(section.data[index:], section_addr + index)
        size = result.size or 1
        disassembled = result.status != DECODE_FAIL
        inst = result.instruction if disassembled else None

        self.lvp.update(SectionedAddress(section_addr + index, section.index),
                        SectionedAddress(section_addr + index + size, section.index),
                        index + size != end)
        address = SectionedAddress(section_addr + index + vma_adjustment, section.index)
        self.pretty_printer.print_inst(target.printer, inst, section.data[index:index + size], address, out,
                                       '', self.source_printer, self.objfile, relocations, self.lvp, labels)
        out.write(result.comment)

        if disassembled and target.analyzer is not None:
            self.print_target(out, target.analyzer, inst, section_addr + index, size, symbols, labels)
        return size

    def print_target(self, out, analyzer, inst, address, size, symbols, labels):
        target_addr = analyzer.evaluate_branch(inst, address, size)
        if target_addr is None:
            target_addr = analyzer.evaluate_memory_operand_address(inst, address, size)
            if target_addr is None:
                return
            if not self.options.symbolize_operands:
                out.write('  # {:x}'.format(target_addr))
        out.write(self.resolver.annotate(target_addr, symbols, labels))

    def print_inline_relocations(self, out, section, cursor, next_offset):
        "Prints the relocations patching bytes before 'next_offset' which haven't been printed yet."
        objfile = self.objfile
        options = self.options
        while True:
            rel = cursor.peek()
            if rel is None:
                break
            offset = rel.offset
            if rel.hidden or section.address + offset < options.start_address:
                cursor.advance()
                continue
            if offset >= next_offset:
                break
            sym_section = rel.symbol.section if rel.symbol is not None else None
            if sym_section is not None and should_adjust_va(objfile, sym_section):
                offset += options.adjust_vma
            print_relocation(out, objfile, rel, section.address + offset, self.is64)
            self.lvp.print_after_other_line(out, True)
            cursor.advance()


def dump_object(objfile, options, section_filter, out, manual_symbols=(), target=None):
    """Prints the listing for one object: its header, then relocations and/or disassembly.

    Raises NoTargetError if disassembly is requested and no decoder exists
    for the object's architecture.
    """
    out.write('\n{}:\tfile format {}\n\n'.format(objfile.filename, objfile.format_name.lower()))
    if options.has_start_address or options.has_stop_address:
        check_for_invalid_start_stop_address(objfile, options)
    if options.relocations and not options.disassemble:
        print_relocations(out, objfile, section_filter, options)
    if options.disassemble:
        if target is None:
            target = lookup_target(objfile, options.triple)
        ObjectDisassembler(objfile, target, options, section_filter, manual_symbols).run(out)
