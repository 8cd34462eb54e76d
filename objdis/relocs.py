import collections
from operator import attrgetter

from .util import debug, ObjectFormatError

# Mach-O relocation types which only make sense as half of a pair
GENERIC_RELOC_PAIR = 1
X86_64_RELOC_UNSIGNED = 0
X86_64_RELOC_SUBTRACTOR = 5


def is_relocation_hidden(objfile, relocations, i):
    """Whether relocations[i] is the second half of a composite relocation.

    llvm-objdump folds such entries into the preceding one, so they
    are never printed on their own.  Only Mach-O has them.
    """
    if not objfile.is_macho:
        return False
    rtype = relocations[i].type
    if objfile.arch in ('x86', 'arm', 'thumb', 'ppc'):
        return rtype == GENERIC_RELOC_PAIR
    if objfile.arch == 'x86_64':
        if rtype == X86_64_RELOC_UNSIGNED and i > 0:
            return relocations[i - 1].type == X86_64_RELOC_SUBTRACTOR
    return False


def build_relocation_map(objfile, section_filter):
    """Returns {relocated section: [Relocation, ...]} for every kept relocated section.

    Entries from all the relocation sections which apply to the same section
    are merged and sorted by offset, ties keeping file order.
    """
    relmap = {}
    for index, section in enumerate(objfile.sections):
        if section.relocated_section_error is not None:
            raise ObjectFormatError("section ({}): failed to get a relocated section: {}".format(index, section.relocated_section_error), objfile.filename)
        target = section.relocated_section
        if target is None or not section_filter.keep(target):
            continue
        debug(1, "Relocations from {!r} apply to {!r}".format(section.name, target.name))
        relocations = section.relocations
        for i, rel in enumerate(relocations):
            rel.hidden = is_relocation_hidden(objfile, relocations, i)
        relmap.setdefault(target, []).extend(relocations)
    for relocations in relmap.values():
        relocations.sort(key=attrgetter('offset'))
    return relmap


class RelocationCursor:
    "A forward-only position in one section's sorted relocation list."
    def __init__(self, relocations):
        self.relocations = relocations
        self.pos = 0

    def peek(self):
        if self.pos < len(self.relocations):
            return self.relocations[self.pos]
        return None

    def advance(self):
        self.pos += 1


def print_relocation(out, objfile, rel, address, is64):
    "One inline relocation line (without the trailing newline)."
    value = objfile.relocation_value_string(rel)
    if is64:
        out.write('\t\t{:016x}:  {}\t{}'.format(address, rel.type_name, value))
    else:
        out.write('\t\t\t{:08x}:  {}\t{}'.format(address, rel.type_name, value))


def print_relocations(out, objfile, section_filter, options):
    """The stand-alone relocation listing (-r without -d).

    Only relocatable objects are listed.  Here the section filter applies to
    the relocation sections themselves.
    """
    if not objfile.relocatable:
        return
    width = 16 if objfile.bytes_in_address > 4 else 8
    groups = collections.OrderedDict()
    for index, section in section_filter.iter_sections(objfile):
        if not section.relocations:
            continue
        if section.relocated_section_error is not None:
            raise ObjectFormatError("section ({}): unable to get a relocation target: {}".format(index, section.relocated_section_error), objfile.filename)
        if section.relocated_section is None:
            continue
        groups.setdefault(section.relocated_section, []).append(section)
    for target, relsecs in groups.items():
        out.write('RELOCATION RECORDS FOR [{}]:\n'.format(target.name))
        out.write('{:<{width}} {:<24} VALUE\n'.format('OFFSET', 'TYPE', width=width))
        for relsec in relsecs:
            relocations = relsec.relocations
            for i, rel in enumerate(relocations):
                if rel.offset < options.start_address or rel.offset > options.stop_address:
                    continue
                if is_relocation_hidden(objfile, relocations, i):
                    continue
                out.write('{:0{width}x} {:<24} {}\n'.format(rel.offset, rel.type_name, objfile.relocation_value_string(rel), width=width))
        out.write('\n')
