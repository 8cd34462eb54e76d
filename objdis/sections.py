from .util import debug, report_cmdline_warning


class SectionFilter:
    """Chooses which sections of an object take part in the dump.

    The same filter is shared by every input of a run so that section names
    given with -j/--section can be checked against all of them at the end.
    """
    def __init__(self, names=()):
        self.names = list(names)
        self.found_names = set()

    def check(self, section):
        "Returns a (keep, counts_toward_index) pair for 'section'."
        if not self.names:
            return (True, True)
        name = section.name
        if name is None:
            return (False, False)
        if name:
            self.found_names.add(name)
        return (name in self.names, True)

    def keep(self, section):
        return self.check(section)[0]

    def iter_sections(self, objfile):
        "Yields (index, section) for each kept section of 'objfile'."
        index = -1
        for section in objfile.sections:
            keep, counted = self.check(section)
            if counted:
                index += 1
            if keep:
                yield index, section
            else:
                debug(2, "Section {!r} filtered out".format(section.name))

    def unmatched_names(self):
        if not self.names:
            return []
        if any(name in self.found_names for name in self.names):
            return []
        return [name for name in self.names if name]

    def warn_on_no_match(self):
        for name in self.unmatched_names():
            report_cmdline_warning("section '{}' mentioned in a -j/--section option, but not found in any input file".format(name))
