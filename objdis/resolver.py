from .util import debug, demangle


def resolve_target(target, relocatable, current_symbols, all_symbols, section_addresses, absolute_symbols):
    """Find the symbol a target address belongs to.

    In a relocatable object only the current section and the absolute
    symbols are searched.  In a linked image every section starting at the
    nearest address below the target is a candidate.  Returns a
    (symbol, displacement) pair, or None.  The symbol lists must be
    SortedKeyLists keyed on address.
    """
    candidates = []
    if relocatable:
        candidates.append(current_symbols)
    else:
        pos = section_addresses.bisect_key_right((target, float('inf')))
        if pos:
            nearest = section_addresses[pos - 1][0]
            while pos and section_addresses[pos - 1][0] == nearest:
                pos -= 1
                candidates.append(all_symbols.get(section_addresses[pos][1], ()))
    candidates.append(absolute_symbols)

    for symbols in candidates:
        if not symbols:
            continue
        pos = symbols.bisect_key_right(target)
        if pos:
            sym = symbols[pos - 1]
            return (sym, target - sym.address)
    return None


def format_target_annotation(target, match, labels, demangle_names=False):
    label = labels.get(target) if labels else None
    if match is not None:
        sym, disp = match
        name = demangle(sym.name) if demangle_names else sym.name
        if disp == 0:
            return ' <{}>'.format(name)
        if label is None:
            return ' <{}+0x{:x}>'.format(name, disp)
    if label is not None:
        return ' <{}>'.format(label)
    return ''


class TargetResolver:
    "resolve_target() bound to the symbol tables of one object."

    def __init__(self, symbol_index, relocatable, demangle_names=False):
        self.index = symbol_index
        self.relocatable = relocatable
        self.demangle_names = demangle_names

    def resolve(self, target, current_symbols):
        match = resolve_target(target, self.relocatable, current_symbols, self.index.section_symbols, self.index.section_addresses, self.index.absolute_symbols)
        if match is not None:
            debug(3, "Target 0x{:x} resolved to {!r}+0x{:x}".format(target, match[0].name, match[1]))
        return match

    def annotate(self, target, current_symbols, labels=None):
        return format_target_annotation(target, self.resolve(target, current_symbols), labels, self.demangle_names)
