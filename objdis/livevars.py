from elftools.common.exceptions import DWARFError
from elftools.dwarf.descriptions import describe_reg_name
from elftools.dwarf.dwarf_expr import DWARFExprParser
from elftools.dwarf.locationlists import LocationParser, LocationExpr, LocationEntry, BaseAddressEntry

from .dwarf import die_name, die_pc_range, cu_base_address, subprogram_section_index
from .util import debug

DEBUG_VARS_UNICODE = 'unicode'
DEBUG_VARS_ASCII = 'ascii'

# (unicode, ascii) glyph pairs
RANGE_START = ('╈', '^')
RANGE_MID = ('┃', '|')
RANGE_END = ('┻', 'v')
LABEL_VERT = ('│', '|')
LABEL_CORNER_NEW = ('┌', '/')
LABEL_CORNER_ACTIVE = ('┠', '|')
LABEL_HORIZ = ('─', '-')


def inst_start_column(options, is_x86):
    "Column at which instruction text starts, given what is printed to the left of it."
    if not options.show_raw_insn:
        return 16
    return 40 if is_x86 else 24


def _reg_name(regnum, machine_arch):
    try:
        return describe_reg_name(regnum, machine_arch, True).upper()
    except IndexError:
        return None


def describe_location(ops, machine_arch):
    """Compact rendering of a DWARF location expression.

    Registers print as their names, register-relative addresses as
    [REG+off] (or REG+off for a computed value), anything else gives up and
    names the first operation it doesn't understand.
    """
    stack = []
    for op in ops:
        name = op.op_name
        if name in ('DW_OP_regx', 'DW_OP_bregx') or (name.startswith(('DW_OP_reg', 'DW_OP_breg')) and name[-1].isdigit()):
            if name == 'DW_OP_regx' or name == 'DW_OP_bregx':
                regnum = op.args[0]
                offset = op.args[1] if name == 'DW_OP_bregx' else 0
            else:
                base = 'DW_OP_breg' if name.startswith('DW_OP_breg') else 'DW_OP_reg'
                regnum = int(name[len(base):])
                offset = op.args[0] if base == 'DW_OP_breg' else 0
            reg = _reg_name(regnum, machine_arch)
            if reg is None:
                return '<unknown register {}>'.format(regnum)
            if name.startswith('DW_OP_breg'):
                if offset:
                    reg += '{:+d}'.format(offset)
                stack.append([reg, False])
            else:
                stack.append([reg, True])
        elif name == 'DW_OP_stack_value':
            if stack:
                stack[-1][1] = True
        else:
            return '<unknown op {} ({})>'.format(name, op.op)
    if not stack:
        return ''
    text, is_value = stack[0]
    if is_value:
        return text
    return '[{}]'.format(text)


class LiveVariable:
    """One location of one source variable, valid over [low_pc, high_pc).

    A variable whose location changes over its lifetime is represented by
    several LiveVariables with the same name.
    """
    def __init__(self, expr, name, low_pc, high_pc, section_index=None, machine_arch=None, unit=None, func_die=None):
        self.expr = expr
        self.name = name
        self.low_pc = low_pc
        self.high_pc = high_pc
        self.section_index = section_index
        self.machine_arch = machine_arch
        self.unit = unit
        self.func_die = func_die

    def live_at_address(self, addr):
        if self.low_pc is None:
            return False
        if self.section_index is not None and self.section_index != addr.section_index:
            return False
        return self.low_pc <= addr.address < self.high_pc

    def location_text(self):
        return describe_location(self.expr, self.machine_arch)

    def __repr__(self):
        return '<LiveVariable {} @ [0x{:x}, 0x{:x}): {}>'.format(self.name, self.low_pc or 0, self.high_pc or 0, self.location_text())


class Column:
    NULL_VAR = None

    def __init__(self):
        self.var_index = self.NULL_VAR
        self.live_in = False
        self.live_out = False
        self.must_draw_label = False

    @property
    def is_active(self):
        return self.var_index is not self.NULL_VAR

    def __repr__(self):
        return '<Column var={} in={} out={} label={}>'.format(self.var_index, self.live_in, self.live_out, self.must_draw_label)


class LiveVariablePrinter:
    def __init__(self, mode=DEBUG_VARS_UNICODE, indent_level=0):
        self.glyph_index = 1 if mode == DEBUG_VARS_ASCII else 0
        self.indent_level = indent_level
        self.variables = []
        self.columns = []

    def add_variable(self, var):
        self.variables.append(var)

    def add_compile_unit(self, cu, loc_parser, machine_arch=None, objfile=None):
        top = cu.get_top_DIE()
        if top.tag == 'DW_TAG_subprogram':
            self._add_function(top, loc_parser, machine_arch, objfile)
        else:
            for child in top.iter_children():
                self._add_function(child, loc_parser, machine_arch, objfile)

    def load_dwarf(self, dwarfinfo, machine_arch=None, objfile=None):
        loc_parser = LocationParser(dwarfinfo.location_lists())
        for cu in dwarfinfo.iter_CUs():
            self.add_compile_unit(cu, loc_parser, machine_arch, objfile)
        for var in self.variables:
            debug(3, repr(var))

    def _add_function(self, die, loc_parser, machine_arch, objfile, section_index=None):
        # Ranges of a variable lie in the section of its subprogram.
        if die.tag == 'DW_TAG_subprogram':
            section_index = subprogram_section_index(objfile, die)
        for child in die.iter_children():
            if child.tag in ('DW_TAG_variable', 'DW_TAG_formal_parameter'):
                self._add_die_variable(die, child, loc_parser, machine_arch, section_index)
            else:
                self._add_function(child, loc_parser, machine_arch, objfile, section_index)

    def _add_die_variable(self, func_die, var_die, loc_parser, machine_arch, section_index=None):
        func_low, func_high = die_pc_range(func_die)
        name = die_name(var_die)
        try:
            locations = _die_locations(var_die, loc_parser)
        except DWARFError as e:
            # Optimised code often has variables with broken or missing
            # locations; they are left out without a warning.
            debug(2, "Ignoring variable {!r}: {}".format(name, e))
            return
        for pc_range, expr in locations:
            if pc_range is None:
                pc_range = (func_low, func_high)
            self.add_variable(LiveVariable(expr, name, pc_range[0], pc_range[1], section_index, machine_arch, var_die.cu, func_die))

    def glyph(self, pair):
        return pair[self.glyph_index]

    def _move_to_first_var_column(self, out):
        logical = max((out.column - self.indent_level + 1) // 2, 0)
        physical = self.indent_level + logical * 2
        if physical > out.column:
            out.pad_to_column(physical)
        return logical

    def _find_free_column(self):
        for i, col in enumerate(self.columns):
            if not col.is_active:
                return i
        old_size = len(self.columns)
        # Growing to index N leaves room for N + 1 columns.
        new_size = max(old_size * 2, 1) + 1
        self.columns.extend(Column() for i in range(new_size - old_size))
        return old_size

    def update(self, this_addr, next_addr, include_defined_vars):
        """Moves to the instruction between this_addr and next_addr.

        Ranges live at this_addr are live-in, ranges live at next_addr are
        live-out.  Columns already in use keep their position.  With
        include_defined_vars false, ranges which only start at next_addr are
        not given a column yet.
        """
        checked = set()
        for i, col in enumerate(self.columns):
            if not col.is_active:
                continue
            checked.add(col.var_index)
            var = self.variables[col.var_index]
            col.live_in = var.live_at_address(this_addr)
            col.live_out = var.live_at_address(next_addr)
            debug(4, "pass 1, 0x{:x}-0x{:x}, {}, col {}: live_in={}, live_out={}".format(this_addr.address, next_addr.address, var.name, i, col.live_in, col.live_out))
            if not col.live_in and not col.live_out:
                col.var_index = Column.NULL_VAR

        if not include_defined_vars:
            return
        for var_index, var in enumerate(self.variables):
            if var_index in checked:
                continue
            live_in = var.live_at_address(this_addr)
            live_out = var.live_at_address(next_addr)
            if not live_in and not live_out:
                continue
            i = self._find_free_column()
            debug(4, "pass 2, 0x{:x}-0x{:x}, {}, col {}: live_in={}, live_out={}".format(this_addr.address, next_addr.address, var.name, i, live_in, live_out))
            col = self.columns[i]
            col.var_index = var_index
            col.live_in = live_in
            col.live_out = live_out
            col.must_draw_label = True

    def print_after_other_line(self, out, after_inst):
        """Continues the active ranges to the right of a line which is not an instruction, and ends the line."""
        if self.columns:
            first = self._move_to_first_var_column(out)
            for col in self.columns[first:]:
                if col.is_active:
                    if (after_inst and col.live_out) or (not after_inst and col.live_in):
                        out.write(self.glyph(RANGE_MID))
                    elif not after_inst and col.live_out:
                        out.write(self.glyph(LABEL_VERT))
                    else:
                        out.write(' ')
                out.write(' ')
        out.write('\n')

    def print_between_insts(self, out, must_print):
        """Prints a label line for each range starting at the next instruction.

        With must_print, something has already been written on the current
        line, so at least one line is finished here even without any labels.
        """
        printed = False
        for i, col in enumerate(self.columns):
            if not (col.is_active and col.must_draw_label):
                continue
            out.pad_to_column(self.indent_level)
            for left in self.columns[:i]:
                if left.is_active:
                    if left.must_draw_label and not left.live_in:
                        out.write(self.glyph(LABEL_VERT) + ' ')
                    else:
                        out.write(self.glyph(RANGE_MID) + ' ')
                else:
                    out.write('  ')

            var = self.variables[col.var_index]
            corner = LABEL_CORNER_ACTIVE if col.live_in else LABEL_CORNER_NEW
            out.write(self.glyph(corner) + self.glyph(LABEL_HORIZ) + ' ')
            out.write(var.name)
            out.write(' = ')
            out.write(var.location_text())

            first = self._move_to_first_var_column(out)
            for right in self.columns[first:]:
                if right.is_active and right.live_in:
                    out.write(self.glyph(RANGE_MID) + ' ')
                else:
                    out.write('  ')
            out.write('\n')
            printed = True

        for col in self.columns:
            if col.is_active:
                col.must_draw_label = False

        if must_print and not printed:
            self.print_after_other_line(out, False)

    def print_after_inst(self, out):
        "Draws the ranges to the right of an instruction line (without ending it)."
        if not self.columns:
            return
        first = self._move_to_first_var_column(out)
        for col in self.columns[first:]:
            if not col.is_active:
                out.write('  ')
            elif col.live_in and col.live_out:
                out.write(self.glyph(RANGE_MID) + ' ')
            elif col.live_out:
                out.write(self.glyph(RANGE_START) + ' ')
            elif col.live_in:
                out.write(self.glyph(RANGE_END) + ' ')
            else:
                raise AssertionError("variable column must be live in or out")


# DWARF helpers

def _die_locations(die, loc_parser):
    """[(pc_range or None, parsed expression), ...] for the DW_AT_location of 'die'.

    A plain expression (not a location list) gives a single entry without a
    range.
    """
    attr = die.attributes.get('DW_AT_location')
    if attr is None:
        return []
    version = die.cu['version']
    if not loc_parser.attribute_has_location(attr, version):
        return []
    expr_parser = DWARFExprParser(die.cu.structs)
    loc = loc_parser.parse_from_attribute(attr, version, die)
    if isinstance(loc, LocationExpr):
        return [(None, expr_parser.parse_expr(loc.loc_expr))]
    result = []
    base = cu_base_address(die.cu)
    for entry in loc:
        if isinstance(entry, BaseAddressEntry):
            base = entry.base_address
        elif isinstance(entry, LocationEntry):
            if getattr(entry, 'is_absolute', False):
                pc_range = (entry.begin_offset, entry.end_offset)
            else:
                pc_range = (base + entry.begin_offset, base + entry.end_offset)
            result.append((pc_range, expr_parser.parse_expr(entry.loc_expr)))
    return result
