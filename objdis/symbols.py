from operator import attrgetter

from sortedcontainers import SortedKeyList, SortedList

from .model import Symbol, STT_SECTION, STT_FUNC, STT_OBJECT, STT_NOTYPE
from .util import debug, report_warning

MAPPING_SYMBOL_PREFIXES = ('$d', '$x', '$a', '$t')


def _new_symbol_list(symbols=()):
    # SortedKeyList.add() inserts after any equal keys, so entries sharing an
    # address stay in the order they were found.
    return SortedKeyList(symbols, key=attrgetter('address'))


class SymbolIndex:
    """Per-section address-sorted symbol tables for one object.

    'section_symbols' maps each Section to its symbols, 'absolute_symbols'
    holds everything without a section (absolute, undefined and common
    symbols), and 'section_addresses' is the (address, section) table used to
    find candidate sections for a target address in linked images.
    """
    def __init__(self, objfile):
        self.objfile = objfile
        self.section_symbols = {}
        self.absolute_symbols = _new_symbol_list()
        self.section_addresses = SortedKeyList(key=lambda e: (e[0], e[1].size))

    def build(self, manual_symbols=()):
        objfile = self.objfile
        for sym in objfile.symbols:
            self.add_symbol(sym)
        if not self.section_symbols and objfile.is_elf and objfile.dynamic_symbols:
            debug(1, "No static symbols found; falling back to the dynamic symbol table")
            for sym in objfile.dynamic_symbols:
                if sym.section is None:
                    continue
                self.add_symbol(sym)
        self.add_plt_symbols()
        for section in objfile.sections:
            self.section_addresses.add((section.address, section))
        self.add_exports()
        for sym in manual_symbols:
            debug(1, "Adding manual symbol {!r} at 0x{:x}".format(sym.name, sym.address))
            self.add_symbol(sym)
        return self

    def add_symbol(self, sym):
        objfile = self.objfile
        if not sym.name:
            return
        if objfile.is_elf and sym.type == STT_SECTION:
            return
        if objfile.is_macho and sym.is_stab:
            return
        if sym.section is None:
            self.absolute_symbols.add(sym)
        else:
            self.symbols_in(sym.section).add(sym)

    def add_plt_symbols(self):
        objfile = self.objfile
        plt = objfile.get_section('.plt')
        if plt is None:
            return
        for sym, address in objfile.plt_entries:
            if sym is None:
                report_warning("PLT entry at 0x{:x} references an invalid symbol".format(address), objfile.filename)
                continue
            if not sym.name:
                continue
            self.symbols_in(plt).add(Symbol(address, sym.name + '@plt', sym.type, plt))

    def add_exports(self):
        "Adds names from a PE export table; linked images often have no other symbols."
        for name, address in self.objfile.exports:
            if not name:
                continue
            section = self.find_section(address)
            sym = Symbol(address, name, STT_NOTYPE, section)
            if section is None:
                self.absolute_symbols.add(sym)
            else:
                self.symbols_in(section).add(sym)

    def find_section(self, address):
        "The last section starting at or before 'address' (its size is not checked)."
        pos = self.section_addresses.bisect_key_right((address, float('inf')))
        if pos == 0:
            return None
        return self.section_addresses[pos - 1][1]

    def symbols_in(self, section):
        symbols = self.section_symbols.get(section)
        if symbols is None:
            symbols = self.section_symbols[section] = _new_symbol_list()
        return symbols

    def symbols_for_disassembly(self, section):
        """The symbol table of 'section', making sure something is defined at its start address.

        A section with no symbol at its base gets a synthetic one named after
        the section.  It is added to the shared table, so later target
        lookups see it too.
        """
        symbols = self.symbols_in(section)
        if not symbols or symbols[0].address != section.address:
            symtype = STT_FUNC if section.is_text else STT_OBJECT
            debug(2, "Adding section start symbol {!r}".format(section.name))
            symbols.add(Symbol(section.address, section.name, symtype, section))
        return symbols

    def mapping_symbols(self, section):
        "Sorted (offset, kind) pairs for the ARM/AArch64 mapping symbols of 'section'."
        pairs = SortedList()
        for sym in self.section_symbols.get(section, ()):
            if sym.name.startswith(MAPPING_SYMBOL_PREFIXES):
                pairs.add((sym.address - section.address, sym.name[1]))
        return pairs


def get_mapping_symbol_kind(pairs, offset):
    "Kind character of the last mapping symbol at or before 'offset', or '\\0' if there is none."
    pos = pairs.bisect_right((offset, '\U0010ffff'))
    if pos == 0:
        return '\0'
    return pairs[pos - 1][1]
