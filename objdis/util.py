import logging
import sys

from itanium_demangler import parse as parse_mangled_name

# Logging setup and utility routines

log = logging.getLogger(__name__)
log.addHandler(logging.NullHandler())

info_level = 0
debug_level = 0

def info(level, msg, *args, **kwargs):
    if level <= info_level:
        log.info(msg, *args, **kwargs)

def debug(level, msg, *args, **kwargs):
    if level <= debug_level:
        indent = ' ' * max(0, level - 1)
        log.debug(indent + msg, *args, **kwargs)

def report_warning(message, filename):
    # Output order between stdout and stderr matters, especially when a single
    # run dumps several objects.
    sys.stdout.flush()
    log.warning("'{}': {}".format(filename, message))

def report_cmdline_warning(message):
    sys.stdout.flush()
    log.warning(message)


class SimpleFormatter (logging.Formatter):
    def formatMessage(self, record):
        return str(record.msg)

    def format(self, record):
        text = logging.Formatter.format(self, record)
        if record.levelno == logging.INFO:
            return text
        else:
            prefixed = ('[{}] {}'.format(record.levelname, line) for line in text.split('\n'))
            return '\n'.join(prefixed)


def dump_bytes(data):
    "Format bytes the way they appear in the raw-instruction column"
    return ' '.join('{:02x}'.format(b) for b in data)

def format_hex(value, width):
    "0x-prefixed hex, zero-padded so the whole string is 'width' characters long"
    return '0x{:0{digits}x}'.format(value, digits=max(width - 2, 1))

def is_print(c):
    return 0x20 <= c < 0x7f


def demangle(name):
    "The demangled form of an Itanium C++ ABI symbol name, or 'name' itself if it isn't one."
    try:
        ast = parse_mangled_name(name)
    except (NotImplementedError, ValueError) as e:
        debug(3, "Cannot demangle {!r}: {}".format(name, e))
        return name
    if ast is None:
        return name
    return str(ast)


# Exceptions

class ObjdisException (Exception):
    pass


class ObjectFormatError (ObjdisException):
    "Malformed or unsupported input.  Processing of the affected file is abandoned."
    def __init__(self, message, filename=None, member=None):
        ObjdisException.__init__(self, message)
        self.message = message
        self.filename = filename
        self.member = member

    def __str__(self):
        if self.filename is None:
            return self.message
        if self.member is not None:
            return "{}({}): {}".format(self.filename, self.member, self.message)
        return "'{}': {}".format(self.filename, self.message)


class NoTargetError (ObjdisException):
    "No decoder/printer is available for the object's architecture.  Fatal for the whole run."
    pass
