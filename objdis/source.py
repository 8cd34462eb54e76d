import collections
from operator import itemgetter

from elftools.common.exceptions import ELFError, DWARFError
from elftools.dwarf.constants import DW_LNE_set_address
from sortedcontainers import SortedDict, SortedKeyList

from .dwarf import attr_string, debug_address_section, die_ranges
from .util import debug, report_warning, demangle

BAD_STRING = '<invalid>'

LineInfo = collections.namedtuple('LineInfo', 'file_name line function_name source')
LineInfo.__new__.__defaults__ = (BAD_STRING, 0, BAD_STRING, None)

FUNCTION_TAGS = ('DW_TAG_subprogram', 'DW_TAG_inlined_subroutine')


class DwarfLineTable:
    """Address to source location lookups built from DWARF line programs.

    Rows and function ranges are kept per section, since the sections of a
    relocatable object all start at 0.  Anything whose section can't be told
    goes in the None table, which every lookup falls back to.  Function
    names come from the innermost subprogram or inlined subroutine covering
    the address, preferring linkage names.
    """
    def __init__(self, dwarfinfo, objfile=None):
        self.dwarfinfo = dwarfinfo
        self.objfile = objfile
        self.rows = {}
        self.functions = {}
        for cu in dwarfinfo.iter_CUs():
            self._load_line_program(cu)
            self._load_functions(cu.get_top_DIE(), 0)
        debug(2, "Loaded {} line table rows and {} function ranges".format(
            sum(len(rows) for rows in self.rows.values()), sum(len(funcs) for funcs in self.functions.values())))

    def rows_in(self, section_index):
        rows = self.rows.get(section_index)
        if rows is None:
            rows = self.rows[section_index] = SortedDict()
        return rows

    def functions_in(self, section_index):
        functions = self.functions.get(section_index)
        if functions is None:
            functions = self.functions[section_index] = SortedKeyList(key=itemgetter(0))
        return functions

    def _set_address_offsets(self, lineprog):
        "Offsets of the relocated DW_LNE_set_address operands of 'lineprog', in program order."
        if self.objfile is None or not self.objfile.relocatable:
            return []
        targets = self.objfile.debug_relocation_targets('.debug_line')
        start = lineprog.program_start_offset
        end = lineprog.program_end_offset
        return sorted(offset for offset in targets if start <= offset < end)

    def _load_line_program(self, cu):
        lineprog = self.dwarfinfo.line_program_for_CU(cu)
        if lineprog is None:
            return
        comp_dir = attr_string(cu.get_top_DIE(), 'DW_AT_comp_dir')
        set_address_offsets = self._set_address_offsets(lineprog)
        count = 0
        rows = self.rows_in(None)
        file_names = {}
        for entry in lineprog.get_entries():
            if entry.is_extended and entry.command == DW_LNE_set_address:
                offset = set_address_offsets[count] if count < len(set_address_offsets) else None
                count += 1
                rows = self.rows_in(debug_address_section(self.objfile, '.debug_line', offset, entry.args[0]))
            state = entry.state
            if state is None:
                continue
            if state.end_sequence:
                rows.setdefault(state.address, None)
                continue
            name = file_names.get(state.file)
            if name is None:
                name = file_names[state.file] = _line_program_file_name(lineprog, state.file, comp_dir)
            rows[state.address] = (name, state.line)
        if set_address_offsets and count != len(set_address_offsets):
            debug(1, "Line program at 0x{:x}: {} relocations for {} set_address operations".format(
                lineprog.program_start_offset, len(set_address_offsets), count))

    def _load_functions(self, die, depth):
        for child in die.iter_children():
            if child.tag in FUNCTION_TAGS:
                name = _function_name(child)
                for section_index, low, high in die_ranges(child, self.objfile):
                    self.functions_in(section_index).add((low, high, depth, name))
                self._load_functions(child, depth + 1)
            else:
                self._load_functions(child, depth)

    def function_name(self, address, section_index=None):
        for key in _lookup_order(section_index):
            functions = self.functions.get(key)
            if functions:
                name = _innermost_function(functions, address)
                if name is not None:
                    return name
        return BAD_STRING

    def symbolize_code(self, address):
        addr = address.address
        function_name = self.function_name(addr, address.section_index)
        for key in _lookup_order(address.section_index):
            rows = self.rows.get(key)
            if not rows:
                continue
            pos = rows.bisect_right(addr)
            if pos == 0:
                continue
            row = rows.peekitem(pos - 1)[1]
            if row is None:
                break
            return LineInfo(row[0], row[1], function_name)
        return LineInfo(function_name=function_name)


def _lookup_order(section_index):
    if section_index is None:
        return (None,)
    return (section_index, None)


def _innermost_function(functions, address):
    best = None
    pos = functions.bisect_key_right(address)
    while pos:
        pos -= 1
        low, high, depth, name = functions[pos]
        # Ranges nest, so the innermost one containing the address is
        # the one starting last.
        if best is not None and low < best[0]:
            break
        if low <= address < high and (best is None or depth > best[2]):
            best = (low, high, depth, name)
    if best is None:
        return None
    return best[3]


class SourcePrinter:
    "Prints file:line and source text lines ahead of the instructions they belong to."

    def __init__(self, objfile, options, line_table=None):
        self.objfile = objfile
        self.options = options
        self.line_table = line_table
        self.loaded = line_table is not None
        self.old_info = LineInfo()
        self.line_cache = {}
        self.missing_sources = set()
        self.warned_invalid_debug_info = False

    def _load_line_table(self):
        self.loaded = True
        dwarfinfo = self.objfile.get_dwarf_info()
        if dwarfinfo is None:
            return
        self.line_table = DwarfLineTable(dwarfinfo, self.objfile)

    def symbolize(self, address):
        try:
            if not self.loaded:
                self._load_line_table()
            if self.line_table is None:
                return LineInfo()
            return self.line_table.symbolize_code(address)
        except (ELFError, DWARFError) as e:
            self.line_table = None
            if not self.warned_invalid_debug_info:
                self.warned_invalid_debug_info = True
                report_warning("failed to parse debug information: {}".format(e), self.objfile.filename)
            return LineInfo()

    def print_source_line(self, out, address, object_filename, lvp, delimiter='; '):
        info = self.symbolize(address)
        if self.options.demangle:
            info = info._replace(function_name=demangle(info.function_name))
        prefix = self.options.prefix
        if prefix and _is_absolute(info.file_name):
            name = info.file_name
            if self.options.prefix_strip > 0:
                level = 0
                start = 0
                for pos in range(1, len(name)):
                    if level >= self.options.prefix_strip:
                        break
                    if name[pos] == '/':
                        start = pos
                        level += 1
                name = name[start:]
            info = info._replace(file_name=_append_path(prefix, name))
        if self.options.print_lines:
            self.print_lines(out, info, delimiter, lvp)
        if self.options.print_source:
            self.print_sources(out, info, object_filename, delimiter, lvp)
        self.old_info = info

    def print_lines(self, out, info, delimiter, lvp):
        print_function = info.function_name != BAD_STRING and info.function_name != self.old_info.function_name
        if print_function:
            out.write(delimiter + info.function_name)
            if not info.function_name.endswith('()'):
                out.write('()')
            out.write(':\n')
        if info.file_name != BAD_STRING and info.line != 0 and (
                self.old_info.line != info.line or self.old_info.file_name != info.file_name or print_function):
            out.write('{}{}:{}'.format(delimiter, info.file_name, info.line))
            lvp.print_between_insts(out, True)

    def print_sources(self, out, info, object_filename, delimiter, lvp):
        if info.file_name == BAD_STRING or info.line == 0:
            return
        if self.old_info.line == info.line and self.old_info.file_name == info.file_name:
            return
        lines = self.line_cache.get(info.file_name)
        if lines is None:
            lines = self.cache_source(info)
            if lines is None:
                return
        if info.line > len(lines):
            report_warning("debug info line number {} exceeds the number of lines in {}".format(info.line, info.file_name), object_filename)
            return
        out.write(delimiter + lines[info.line - 1])
        lvp.print_between_insts(out, True)

    def cache_source(self, info):
        if info.source is not None:
            text = info.source
        else:
            try:
                with open(info.file_name, 'rb') as f:
                    text = f.read().decode('utf-8', 'replace')
            except (FileNotFoundError, IOError) as e:
                debug(1, "Cannot read source file: {}".format(e))
                if info.file_name not in self.missing_sources:
                    self.missing_sources.add(info.file_name)
                    report_warning("failed to find source {}".format(info.file_name), self.objfile.filename)
                return None
        lines = split_source_lines(text)
        self.line_cache[info.file_name] = lines
        return lines


def split_source_lines(text):
    "Splits on newlines, dropping a CR before each one.  A final unterminated line is kept as is."
    lines = text.split('\n')
    last = lines.pop()
    lines = [line[:-1] if line.endswith('\r') else line for line in lines]
    if last:
        lines.append(last)
    return lines


def _is_absolute(filename):
    return filename.startswith('/')


def _append_path(prefix, name):
    if prefix.endswith('/'):
        return prefix + name.lstrip('/')
    if name.startswith('/'):
        return prefix + name
    return prefix + '/' + name


# DWARF helpers

def _function_name(die):
    for attr_name in ('DW_AT_linkage_name', 'DW_AT_MIPS_linkage_name', 'DW_AT_name'):
        name = attr_string(die, attr_name)
        if name:
            return name
    for ref in ('DW_AT_abstract_origin', 'DW_AT_specification'):
        if ref in die.attributes:
            return _function_name(die.get_DIE_from_attribute(ref))
    return BAD_STRING


def _line_program_file_name(lineprog, file_index, comp_dir):
    version = lineprog['version']
    file_entries = lineprog['file_entry']
    include_dirs = lineprog['include_directory']
    index = file_index if version >= 5 else file_index - 1
    if index < 0 or index >= len(file_entries):
        return BAD_STRING
    entry = file_entries[index]
    name = entry.name.decode('utf-8', 'replace') if isinstance(entry.name, bytes) else entry.name
    if name.startswith('/'):
        return name
    dir_index = entry.dir_index
    if version >= 5:
        directory = include_dirs[dir_index] if dir_index < len(include_dirs) else None
    elif dir_index == 0:
        directory = None
    else:
        directory = include_dirs[dir_index - 1] if dir_index - 1 < len(include_dirs) else None
    if isinstance(directory, bytes):
        directory = directory.decode('utf-8', 'replace')
    if directory is None or directory == '':
        directory = comp_dir
    elif not directory.startswith('/') and comp_dir:
        directory = _append_path(comp_dir, directory)
    if not directory:
        return name
    return _append_path(directory, name)
