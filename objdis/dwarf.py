from elftools.common.utils import struct_parse
from elftools.dwarf.ranges import BaseAddressEntry

ADDRX_FORMS = ('DW_FORM_addrx', 'DW_FORM_addrx1', 'DW_FORM_addrx2', 'DW_FORM_addrx3', 'DW_FORM_addrx4', 'DW_FORM_GNU_addr_index')


def attr_string(die, name):
    attr = die.attributes.get(name)
    if attr is None:
        return None
    value = attr.value
    if isinstance(value, bytes):
        return value.decode('utf-8', 'replace')
    return value


def die_name(die):
    name = attr_string(die, 'DW_AT_name')
    if not name:
        return ''
    return str(name)


def _addr_base(cu):
    top = cu.get_top_DIE()
    for name in ('DW_AT_addr_base', 'DW_AT_GNU_addr_base'):
        attr = top.attributes.get(name)
        if attr is not None:
            return attr.value
    # Just past the header of the first .debug_addr contribution
    return 8


def attr_address(die, attr):
    if attr.form in ADDRX_FORMS:
        return die.dwarfinfo.get_addr(die.cu, attr.value)
    return attr.value


def debug_address_section(objfile, debug_section, offset, address):
    if objfile is None:
        return None
    return objfile.debug_address_section(debug_section, offset, address)


def attr_section_index(objfile, die, attr, address):
    "Index of the section holding 'address', the value of address attribute 'attr', or None."
    if attr.form in ADDRX_FORMS:
        offset = _addr_base(die.cu) + attr.value * die.cu['address_size']
        return debug_address_section(objfile, '.debug_addr', offset, address)
    return debug_address_section(objfile, '.debug_info', attr.offset, address)


def die_pc_range(die):
    low = die.attributes.get('DW_AT_low_pc')
    high = die.attributes.get('DW_AT_high_pc')
    if low is None or high is None:
        return (None, None)
    low_pc = attr_address(die, low)
    if high.form == 'DW_FORM_addr' or high.form in ADDRX_FORMS:
        high_pc = attr_address(die, high)
    else:
        high_pc = low_pc + high.value
    return (low_pc, high_pc)


def cu_base_address(cu):
    top = cu.get_top_DIE()
    low = top.attributes.get('DW_AT_low_pc')
    if low is None:
        return 0
    return attr_address(top, low)


def rnglist_offset(dwarfinfo, cu, index):
    "Section offset of range list 'index' of 'cu', read from the .debug_rnglists offset table."
    offset_size = 4 if cu.structs.dwarf_format == 32 else 8
    attr = cu.get_top_DIE().attributes.get('DW_AT_rnglists_base')
    if attr is not None:
        base = attr.value
    else:
        base = 12 if offset_size == 4 else 20
    stream = dwarfinfo.debug_rnglists_sec.stream
    return base + struct_parse(cu.structs.Dwarf_offset(''), stream, base + index * offset_size)


def die_ranges(die, objfile=None):
    """[(section index, low, high), ...] covered by 'die', from its low/high pc or its range list.

    The section index is None when it can't be told.
    """
    attrs = die.attributes
    if 'DW_AT_low_pc' in attrs and 'DW_AT_high_pc' in attrs:
        low, high = die_pc_range(die)
        return [(attr_section_index(objfile, die, attrs['DW_AT_low_pc'], low), low, high)]
    attr = attrs.get('DW_AT_ranges')
    if attr is None:
        return []
    dwarfinfo = die.dwarfinfo
    rangelists = dwarfinfo.range_lists()
    if rangelists is None:
        return []
    cu = die.cu
    offset = attr.value
    if attr.form == 'DW_FORM_rnglistx':
        offset = rnglist_offset(dwarfinfo, cu, attr.value)

    if cu['version'] >= 5:
        debug_section = '.debug_rnglists'
        # Addresses follow the one byte entry kind.
        field = 1
    else:
        debug_section = '.debug_ranges'
        field = 0

    top = cu.get_top_DIE()
    base = 0
    base_section = None
    top_low = top.attributes.get('DW_AT_low_pc')
    if top_low is not None:
        base = attr_address(top, top_low)
        base_section = attr_section_index(objfile, top, top_low, base)

    result = []
    for entry in rangelists.get_range_list_at_offset(offset, cu=cu):
        if isinstance(entry, BaseAddressEntry):
            base = entry.base_address
            # A DWARF 4 base address entry is (-1, base).
            position = entry.entry_offset + (field or cu['address_size'])
            base_section = debug_address_section(objfile, debug_section, position, base)
        elif getattr(entry, 'is_absolute', False):
            section_index = debug_address_section(objfile, debug_section, entry.entry_offset + field, entry.begin_offset)
            result.append((section_index, entry.begin_offset, entry.end_offset))
        else:
            low = base + entry.begin_offset
            section_index = None
            if not field:
                section_index = debug_address_section(objfile, debug_section, entry.entry_offset, low)
            if section_index is None:
                section_index = base_section
            result.append((section_index, low, base + entry.end_offset))
    return result


def subprogram_section_index(objfile, die):
    "Index of the section holding the code of subprogram 'die', or None."
    low = die.attributes.get('DW_AT_low_pc')
    if low is not None:
        return attr_section_index(objfile, die, low, attr_address(die, low))
    for section_index, low, high in die_ranges(die, objfile):
        if section_index is not None:
            return section_index
    return None
