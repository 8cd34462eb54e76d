"""ObjectModel for ELF files, read with pyelftools."""
from elftools.common.exceptions import ELFError
from elftools.elf.constants import SH_FLAGS
from elftools.elf.descriptions import describe_reloc_type
from elftools.elf.elffile import ELFFile
from elftools.elf.relocation import RelocationSection
from elftools.elf.sections import SymbolTableSection

from .model import ObjectModel, Section, Symbol, Relocation, FORMAT_ELF, STT_SECTION, STT_FUNC
from .util import info, debug, ObjectFormatError

# e_machine -> arch for (32-bit, 64-bit) objects.  Newer machine types may
# come back from pyelftools as plain numbers.
MACHINE_ARCHES = {
    'EM_386': ('x86', 'x86'),
    'EM_X86_64': ('x86_64', 'x86_64'),
    'EM_ARM': ('arm', 'arm'),
    'EM_AARCH64': ('aarch64', 'aarch64'),
    'EM_MIPS': ('mips', 'mips64'),
    'EM_PPC': ('ppc', 'ppc'),
    'EM_PPC64': ('ppc64', 'ppc64'),
    'EM_SPARC': ('sparc', 'sparc'),
    'EM_SPARC32PLUS': ('sparc', 'sparc'),
    'EM_SPARCV9': ('sparcv9', 'sparcv9'),
    'EM_S390': ('s390x', 's390x'),
    'EM_RISCV': ('riscv32', 'riscv64'),
    'EM_HEXAGON': ('hexagon', 'hexagon'),
    'EM_QDSP6': ('hexagon', 'hexagon'),
    'EM_AMDGPU': ('amdgcn', 'amdgcn'),
    'EM_XTENSA': ('xtensa', 'xtensa'),
    'EM_BPF': ('bpf', 'bpf'),
    94: ('xtensa', 'xtensa'),
    164: ('hexagon', 'hexagon'),
    224: ('amdgcn', 'amdgcn'),
    243: ('riscv32', 'riscv64'),
    247: ('bpf', 'bpf'),
}

FORMAT_NAMES_32 = {
    'x86': 'elf32-i386',
    'x86_64': 'elf32-x86-64',
    'hexagon': 'elf32-hexagon',
    'mips': 'elf32-mips',
    'ppc': 'elf32-powerpc',
    'riscv32': 'elf32-littleriscv',
    'sparc': 'elf32-sparc',
    'amdgcn': 'elf32-amdgpu',
}

FORMAT_NAMES_64 = {
    'x86': 'elf64-i386',
    'x86_64': 'elf64-x86-64',
    'ppc64': 'elf64-powerpc',
    'riscv64': 'elf64-littleriscv',
    's390x': 'elf64-s390',
    'sparcv9': 'elf64-sparc',
    'mips64': 'elf64-mips',
    'amdgcn': 'elf64-amdgpu',
    'bpfel': 'elf64-bpf',
    'bpfeb': 'elf64-bpf',
}

# First PLT entry address and entry size, for the n-th jump slot.
PLT_LAYOUTS = {
    'x86': (16, 16),
    'x86_64': (16, 16),
    'aarch64': (32, 16),
    'arm': (20, 12),
}


class ELFObjectModel (ObjectModel):
    format = FORMAT_ELF

    def __init__(self, filename, elffile, **attrs):
        ObjectModel.__init__(self, filename, **attrs)
        self.elffile = elffile

    def get_dwarf_info(self):
        if not self.elffile.has_dwarf_info():
            return None
        return self.elffile.get_dwarf_info()

    @property
    def dwarf_machine_arch(self):
        return self.elffile.get_machine_arch()


def elf_arch(elf):
    machine = elf['e_machine']
    arches = MACHINE_ARCHES.get(machine)
    if arches is None:
        return 'unknown'
    arch = arches[0] if elf.elfclass == 32 else arches[1]
    if arch == 'bpf':
        arch = 'bpfel' if elf.little_endian else 'bpfeb'
    return arch


def elf_format_name(elf, arch):
    little = elf.little_endian
    if elf.elfclass == 32:
        if arch == 'arm':
            return 'elf32-littlearm' if little else 'elf32-bigarm'
        return FORMAT_NAMES_32.get(arch, 'elf32-unknown')
    if arch == 'aarch64':
        return 'elf64-littleaarch64' if little else 'elf64-bigaarch64'
    if arch == 'ppc64' and little:
        return 'elf64-powerpcle'
    return FORMAT_NAMES_64.get(arch, 'elf64-unknown')


def print_elf_info(elf):
    march = elf.get_machine_arch()
    if elf.little_endian:
        endian = "little-endian"
    else:
        endian = "big-endian"
    info(1, "ELF file architecture: {} ({}, {})".format(march, endian, elf['e_type']))
    info(1, "  {} sections, {} segments".format(elf.num_sections(), elf.num_segments()))
    for k, v in sorted(elf['e_ident'].items()):
        info(1, "  {} = {}".format(k, v))
    info(1, "")


def load_elf(filename, stream):
    """Reads an ELF file from an open binary stream into an ELFObjectModel.

    Raises ObjectFormatError if the file isn't valid ELF.
    """
    try:
        elf = ELFFile(stream)
    except ELFError as e:
        debug(1, "ELFFile: {}".format(e))
        raise ObjectFormatError("The file was not recognized as a valid object file", filename)
    try:
        arch = elf_arch(elf)
        objfile = ELFObjectModel(filename, elf,
                                 format_name=elf_format_name(elf, arch),
                                 arch=arch,
                                 relocatable=elf['e_type'] == 'ET_REL',
                                 bytes_in_address=elf.elfclass // 8,
                                 little_endian=elf.little_endian)
        print_elf_info(elf)
        load_elf_data(objfile, elf)
    except ELFError as e:
        raise ObjectFormatError(str(e), filename)
    return objfile


def load_elf_data(objfile, elf):
    for index in range(elf.num_sections()):
        elf_section = elf.get_section(index)
        header = elf_section.header
        flags = header['sh_flags']
        virtual = header['sh_type'] == 'SHT_NOBITS'
        data = b'' if virtual else elf_section.data()
        section = Section(index, elf_section.name, header['sh_addr'], data, header['sh_size'],
                          is_text=bool(flags & SH_FLAGS.SHF_EXECINSTR),
                          is_data=header['sh_type'] == 'SHT_PROGBITS' and bool(flags & SH_FLAGS.SHF_ALLOC) and not flags & SH_FLAGS.SHF_EXECINSTR,
                          is_bss=virtual and bool(flags & SH_FLAGS.SHF_ALLOC),
                          is_virtual=virtual,
                          alloc=bool(flags & SH_FLAGS.SHF_ALLOC))
        objfile.add_section(section)

    for elf_section in elf.iter_sections():
        if isinstance(elf_section, SymbolTableSection):
            symbols = load_symbols(objfile, elf, elf_section)
            if elf_section['sh_type'] == 'SHT_DYNSYM':
                objfile.dynamic_symbols = symbols
            else:
                objfile.symbols = symbols
    if elf.get_section_by_name('.symtab') is None:
        debug(1, "File has no symbol table section ('.symtab').")

    for index, elf_section in enumerate(elf.iter_sections()):
        if isinstance(elf_section, RelocationSection):
            load_relocations(objfile, elf, index, elf_section)

    load_plt_entries(objfile, elf)


def _symbol_section(objfile, shndx):
    if not isinstance(shndx, int) or shndx == 0 or shndx >= len(objfile.sections):
        # SHN_UNDEF, SHN_ABS, SHN_COMMON and friends
        return None
    return objfile.sections[shndx]


def make_symbol(objfile, elf, elf_sym):
    symtype = elf_sym['st_info']['type']
    section = _symbol_section(objfile, elf_sym['st_shndx'])
    name = elf_sym.name
    if symtype == STT_SECTION and section is not None and not name:
        name = section.name
    address = elf_sym['st_value']
    if objfile.relocatable and section is not None:
        address += section.address
    if objfile.arch == 'arm' and symtype == STT_FUNC:
        # The low bit only marks Thumb code.
        address &= ~1
    bind = elf_sym['st_info']['bind']
    return Symbol(address, name, symtype, section,
                  is_global=bind == 'STB_GLOBAL',
                  is_weak=bind == 'STB_WEAK',
                  is_hidden=elf_sym['st_other']['visibility'] == 'STV_HIDDEN')


def load_symbols(objfile, elf, symtab):
    debug(1, "Processing {}: {} symbols found".format(symtab.name, symtab.num_symbols()))
    result = []
    for index, elf_sym in enumerate(symtab.iter_symbols()):
        if index == 0:
            continue
        sym = make_symbol(objfile, elf, elf_sym)
        debug(2, "Symbol {}: {!r} (section={}, type={}, value=0x{:08x})".format(index, sym.name, elf_sym['st_shndx'], sym.type, elf_sym['st_value']))
        result.append(sym)
    return result


def load_relocations(objfile, elf, index, relsec):
    section = objfile.sections[index]
    target_index = relsec['sh_info']
    if target_index >= len(objfile.sections):
        section.relocated_section_error = "invalid section index: {}".format(target_index)
    elif target_index:
        section.relocated_section = objfile.sections[target_index]

    symtab = None
    if relsec['sh_link']:
        symtab = elf.get_section(relsec['sh_link'])
    relocations = []
    for rel in relsec.iter_relocations():
        sym = None
        if rel['r_info_sym'] and isinstance(symtab, SymbolTableSection):
            sym = make_symbol(objfile, elf, symtab.get_symbol(rel['r_info_sym']))
        addend = rel['r_addend'] if rel.is_RELA() else 0
        relocations.append(Relocation(rel['r_offset'], rel['r_info_type'], describe_reloc_type(rel['r_info_type'], elf), sym, addend))
    section.relocations = relocations
    debug(1, "Relocation section: {} ({}) -- {} entries".format(section.name, index, len(relocations)))


def load_plt_entries(objfile, elf):
    "(symbol, address) for each PLT slot, assuming jump slots are in PLT order."
    plt = objfile.get_section('.plt.sec') or objfile.get_section('.plt')
    layout = PLT_LAYOUTS.get(objfile.arch)
    if plt is None or layout is None:
        return
    first, entry_size = layout
    if plt.name == '.plt.sec':
        first = 0
    for name in ('.rela.plt', '.rel.plt'):
        relsec = elf.get_section_by_name(name)
        if not isinstance(relsec, RelocationSection):
            continue
        symtab = elf.get_section(relsec['sh_link']) if relsec['sh_link'] else None
        for i, rel in enumerate(relsec.iter_relocations()):
            sym = None
            if rel['r_info_sym'] and isinstance(symtab, SymbolTableSection):
                sym = make_symbol(objfile, elf, symtab.get_symbol(rel['r_info_sym']))
            objfile.plt_entries.append((sym, plt.address + first + entry_size * i))
        debug(1, "{} PLT entries found in {}".format(len(objfile.plt_entries), plt.name))
        return


def print_elf_format_error(filename, f):
    "Points out archives, which have to be unpacked or linked into one object first."
    f.seek(0)
    magic = f.read(8)
    if magic == b'!<arch>\n':
        info(0, "Note: It appears this file may be a library (.a) instead of an object (.o) file")
        info(0, "  If this is the case, you have two options:")
        info(0, "  1) Extract the individual .o files from the library using ar:")
        info(0, "       ar x \"{}\"".format(filename))
        info(0, "     and then disassemble them individually.")
        info(0, "  2) Link everything in the library into a single .o file:")
        info(0, "       ld --relocatable --whole-archive \"{}\" -o outputfile.o".format(filename))
        info(0, "     and then disassemble that file.")
