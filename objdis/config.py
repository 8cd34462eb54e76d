import collections
import hashlib
import os

import yaml

from .model import Symbol, STT_NOTYPE, UINT64_MAX
from .util import log, debug

FIXUPS_ENV_VAR = 'OBJDIS_FIXUPS'

OPTION_DEFAULTS = collections.OrderedDict([
    ('disassemble', False),
    ('disassemble_all', False),
    ('disassemble_symbols', frozenset()),
    ('disassemble_zeroes', False),
    ('relocations', False),
    ('filter_sections', ()),
    ('start_address', 0),
    ('stop_address', UINT64_MAX),
    ('has_start_address', False),
    ('has_stop_address', False),
    ('adjust_vma', 0),
    ('show_raw_insn', True),
    ('leading_addr', True),
    ('symbolize_operands', False),
    ('demangle', False),
    ('debug_vars', None),
    ('debug_vars_indent', 40),
    ('print_lines', False),
    ('print_source', False),
    ('prefix', ''),
    ('prefix_strip', 0),
    ('triple', None),
])

DisassemblyOptions = collections.namedtuple('DisassemblyOptions', OPTION_DEFAULTS.keys())
DisassemblyOptions.__new__.__defaults__ = tuple(OPTION_DEFAULTS.values())
DisassemblyOptions.__doc__ = """Every switch that affects the listing, fixed for the whole run.

    Addresses are plain integers; stop_address defaults to the largest
    64-bit value.  debug_vars is None, 'unicode' or 'ascii'.
    """


def _path_tail(path):
    return os.path.normpath(path).split(os.sep)


def same_file(objfile_name, wanted):
    """Whether 'wanted' names the object, comparing whole path components from the end.

    The object's real path is tried as well, so 'wanted' may name a
    symlink's target.
    """
    wanted_parts = _path_tail(wanted)
    for path in (objfile_name, os.path.realpath(objfile_name)):
        parts = _path_tail(path)
        if len(wanted_parts) <= len(parts) and parts[len(parts) - len(wanted_parts):] == wanted_parts:
            return True
    return False


def file_digest(filename):
    "sha256 of the file's contents, in hex"
    digest = hashlib.sha256()
    with open(filename, 'rb') as f:
        for chunk in iter(lambda: f.read(65536), b''):
            digest.update(chunk)
    return digest.hexdigest()


# How well a fixups document fits an object, best last
NO_MATCH = 0
CATCH_ALL = 1
NAME_MATCH = 2
HASH_MATCH = 3


class DocumentRanker:
    "Scores fixups documents against one object file."

    def __init__(self, objfile_name):
        self.objfile_name = objfile_name
        self._digest = None
        self._hashed = False

    def digest(self):
        if not self._hashed:
            self._hashed = True
            try:
                self._digest = file_digest(self.objfile_name)
            except (FileNotFoundError, IOError) as e:
                # Opening the object for disassembly reports this.
                debug(1, "Fixups: no sha256 for {!r}: {}".format(self.objfile_name, e))
        return self._digest

    def rank(self, document):
        "(NO_MATCH..HASH_MATCH, tie breaker); higher wins"
        wanted_name = document.get('filename') or ''
        wanted_hash = document.get('filehash')
        name_matches = bool(wanted_name) and same_file(self.objfile_name, wanted_name)
        if wanted_hash:
            if wanted_hash != self.digest():
                if name_matches:
                    debug(2, "Fixups: {!r} names this object but its filehash is for another build".format(wanted_name))
                return (NO_MATCH, 0)
            if wanted_name and not name_matches:
                debug(1, "Fixups: filehash matches although filename {!r} does not".format(wanted_name))
            return (HASH_MATCH, 0)
        if not wanted_name:
            return (CATCH_ALL, 0)
        if name_matches:
            return (NAME_MATCH, len(_path_tail(wanted_name)))
        return (NO_MATCH, 0)


class Fixups:
    """Extra information about an object file which isn't in the file itself.

    A fixups file is a YAML stream of documents.  Each document applies to
    the object with the given 'filehash' (sha256) or 'filename', or to any
    object if it has neither, and may list manual symbols:

        filename: build/foo.o
        symbols:
          - .text+0x40: helper STT_FUNC
          - 0x8000: reset_vector

    A filehash match beats any filename match, a filename with more path
    components beats a shorter one, and a catch-all document is used when
    nothing names the object.  Ties go to the earlier document.
    """
    @classmethod
    def load_from_file(cls, fixupfile_name, objfile_name):
        ranker = DocumentRanker(objfile_name)
        best = None
        best_rank = (NO_MATCH, 0)
        with open(fixupfile_name, 'r') as f:
            for number, document in enumerate(yaml.safe_load_all(f), 1):
                if not isinstance(document, dict):
                    log.warning("{}: fixups document {} is not a mapping; skipped".format(fixupfile_name, number))
                    continue
                rank = ranker.rank(document)
                if rank > best_rank:
                    best, best_rank = document, rank
        if best is None:
            debug(1, "{}: no fixups for {!r}".format(fixupfile_name, objfile_name))
            return None
        fixups = cls(best)
        debug(2, "{}: using fixups {} for {!r}".format(fixupfile_name, fixups, objfile_name))
        return fixups

    def __init__(self, document):
        self.document = document
        self.name = document.get('filename') or document.get('filehash') or '(default)'

    def __str__(self):
        return self.name

    @property
    def symbols(self):
        "(address spec, 'NAME [TYPE]') pairs"
        entries = self.document.get('symbols') or []
        if not isinstance(entries, list):
            entries = [entries]
        result = []
        for entry in entries:
            if isinstance(entry, dict):
                result.extend(entry.items())
            else:
                log.error("Manual symbol entry {!r} is not an 'ADDRESS: NAME [TYPE]' mapping.  Ignored.".format(entry))
        return result

    def make_symbols(self, objfile):
        "Symbol objects for the manual symbols which can be placed in 'objfile'."
        result = []
        for addrspec, syminfo in self.symbols:
            fields = str(syminfo or '').split()
            if not fields:
                log.error("Manual symbol at {!r} has no name.  Ignored.".format(addrspec))
                continue
            name, symtype = (fields + [STT_NOTYPE])[:2]
            try:
                section, address = parse_addr(objfile, addrspec)
            except ValueError as e:
                log.error("Invalid address for symbol: {!r}: {}".format(addrspec, e))
                continue
            debug(1, "Manual symbol {} at 0x{:x} ({})".format(name, address, section.name if section else 'absolute'))
            result.append(Symbol(address, name, symtype, section))
        return result


def parse_addr(objfile, addrspec):
    """Resolves 'SECTION+OFFSET', 'SECTION-OFFSET', 'SECTION' or a plain address.

    Returns (section or None, address).  A plain address is placed in the
    section containing it, if any.
    """
    if isinstance(addrspec, int):
        return (_containing_section(objfile, addrspec), addrspec)
    basespec = None
    if '+' in addrspec:
        basespec, offset = addrspec.split('+', 1)
        offset = int(offset, 0)
    elif '-' in addrspec:
        basespec, offset = addrspec.split('-', 1)
        offset = -int(offset, 0)
    elif objfile.get_section(addrspec) is not None:
        basespec = addrspec
        offset = 0
    else:
        address = int(addrspec, 0)
        return (_containing_section(objfile, address), address)
    section = objfile.get_section(basespec)
    if section is None:
        raise ValueError("Bad section name: {!r}".format(basespec))
    if offset < 0 or offset > section.size:
        raise ValueError("Offset 0x{:x} is outside of section {!r}".format(offset, basespec))
    return (section, section.address + offset)


def _containing_section(objfile, address):
    for section in objfile.sections:
        if section.alloc and section.size and section.address <= address < section.address + section.size:
            return section
    return None
