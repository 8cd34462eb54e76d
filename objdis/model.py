import collections

from .util import debug

# Object file format families
FORMAT_ELF = 'elf'
FORMAT_COFF = 'coff'
FORMAT_MACHO = 'macho'
FORMAT_WASM = 'wasm'
FORMAT_XCOFF = 'xcoff'

# Symbol types (named the way pyelftools reports them)
STT_NOTYPE = 'STT_NOTYPE'
STT_OBJECT = 'STT_OBJECT'
STT_FUNC = 'STT_FUNC'
STT_SECTION = 'STT_SECTION'
STT_FILE = 'STT_FILE'
STT_COMMON = 'STT_COMMON'
STT_TLS = 'STT_TLS'
STT_GNU_IFUNC = 'STT_GNU_IFUNC'

UINT64_MAX = (1 << 64) - 1

SectionedAddress = collections.namedtuple('SectionedAddress', 'address section_index')
SectionedAddress.__new__.__defaults__ = (None,)


class Section:
    """A read-only view of one section of an object file.

    'index' is the section's position in the file's section table (which is
    also the index used by debug info to refer to it).  Relocation sections
    carry their entries in 'relocations' and point at the section they apply
    to through 'relocated_section'.
    """
    is_text = False
    is_data = False
    is_bss = False
    is_virtual = False
    alloc = False
    segment_name = ''

    def __init__(self, index, name, address, data=b'', size=None, **flags):
        self.index = index
        self.name = name
        self.address = address
        self.data = data
        if size is None:
            size = len(data)
        self.size = size
        self.relocations = []
        self.relocated_section = None
        self.relocated_section_error = None
        for attr, value in flags.items():
            if not hasattr(self, attr):
                raise TypeError("Unknown section attribute: {!r}".format(attr))
            setattr(self, attr, value)

    @property
    def end(self):
        return self.address + self.size

    def __repr__(self):
        return '<Section {} {!r} 0x{:x}+0x{:x}>'.format(self.index, self.name, self.address, self.size)


class Symbol:
    def __init__(self, address, name, type=STT_NOTYPE, section=None, is_global=False, is_weak=False, is_hidden=False, is_stab=False):
        self.address = address
        self.name = name
        self.type = type
        self.section = section
        self.is_global = is_global
        self.is_weak = is_weak
        self.is_hidden = is_hidden
        self.is_stab = is_stab

    def __repr__(self):
        return '<Symbol {!r} 0x{:x} {}>'.format(self.name, self.address, self.type)


class Relocation:
    "One relocation entry.  'offset' is relative to the start of the relocated section."
    hidden = False

    def __init__(self, offset, type, type_name, symbol=None, addend=0):
        self.offset = offset
        self.type = type
        self.type_name = type_name
        self.symbol = symbol
        self.addend = addend

    def __repr__(self):
        return '<Relocation 0x{:x} {} {!r}{:+#x}>'.format(self.offset, self.type_name, self.symbol and self.symbol.name, self.addend)


class ObjectModel:
    """Everything the disassembler needs to know about one input object.

    Loaders (see objdis.elf) fill in the section and symbol tables; the
    disassembler itself only reads from them.
    """
    format = FORMAT_ELF
    format_name = ''
    arch = 'unknown'
    relocatable = False
    bytes_in_address = 8
    little_endian = True
    has_rela = True

    def __init__(self, filename, **attrs):
        self.filename = filename
        self.member = None
        self.sections = []
        self.symbols = []
        self.dynamic_symbols = []
        self.plt_entries = []
        self.exports = []
        self._debug_relocations = {}
        for attr, value in attrs.items():
            if not hasattr(self, attr):
                raise TypeError("Unknown object attribute: {!r}".format(attr))
            setattr(self, attr, value)

    @property
    def is_elf(self):
        return self.format == FORMAT_ELF

    @property
    def is_macho(self):
        return self.format == FORMAT_MACHO

    @property
    def is_x86(self):
        return self.arch in ('x86', 'x86_64')

    def add_section(self, section):
        debug(2, "Section {}: {!r} at 0x{:x} ({} bytes)".format(section.index, section.name, section.address, section.size))
        self.sections.append(section)
        return section

    def add_symbol(self, symbol):
        self.symbols.append(symbol)
        return symbol

    def get_section(self, name):
        for section in self.sections:
            if section.name == name:
                return section
        return None

    def relocation_value_string(self, rel):
        "The symbolic part of a relocation as shown in the listing (SYMBOL[+-]0xADDEND)."
        sym = rel.symbol
        if sym is None:
            target = '*ABS*'
        elif sym.type == STT_SECTION and sym.section is not None:
            target = sym.section.name
        else:
            target = sym.name
        if rel.addend and self.has_rela:
            if rel.addend < 0:
                return '{}-0x{:x}'.format(target, -rel.addend)
            return '{}+0x{:x}'.format(target, rel.addend)
        return target

    def debug_relocation_targets(self, debug_section):
        "{offset: index of the section the relocation points into, or None} for relocations applied to 'debug_section'."
        targets = self._debug_relocations.get(debug_section)
        if targets is None:
            targets = {}
            for relsec in self.sections:
                target = relsec.relocated_section
                if target is None or target.name != debug_section:
                    continue
                for rel in relsec.relocations:
                    sym = rel.symbol
                    targets[rel.offset] = sym.section.index if sym is not None and sym.section is not None else None
            self._debug_relocations[debug_section] = targets
        return targets

    def debug_address_section(self, debug_section, offset, address):
        """Index of the section an address stored in debug section 'debug_section' at 'offset' refers to.

        Every section of a relocatable object starts at 0, so there the
        relocation patching the address decides.  Otherwise it is the
        loadable section containing the address.  None if neither tells.
        """
        if self.relocatable:
            if offset is None:
                return None
            return self.debug_relocation_targets(debug_section).get(offset)
        for section in self.sections:
            if section.alloc and section.size and section.address <= address < section.end:
                return section.index
        return None

    def get_dwarf_info(self):
        "DWARF debug info (as a pyelftools DWARFInfo), or None if the object has none."
        return None

    @property
    def dwarf_machine_arch(self):
        return None

    def __repr__(self):
        return '<ObjectModel {!r} {}>'.format(self.filename, self.format_name)
