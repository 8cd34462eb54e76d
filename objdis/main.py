import argparse
import logging
import os
import sys

from . import util, VERSION_STRING
from .config import DisassemblyOptions, Fixups, FIXUPS_ENV_VAR, file_digest
from .driver import dump_object
from .elf import load_elf, print_elf_format_error
from .livevars import DEBUG_VARS_UNICODE, DEBUG_VARS_ASCII
from .model import UINT64_MAX
from .output import FormattedOutput
from .sections import SectionFilter
from .util import log, info, debug, SimpleFormatter, ObjectFormatError, NoTargetError


def int_arg(value):
    try:
        result = int(value, 0)
    except ValueError:
        raise argparse.ArgumentTypeError("expected a non-negative integer, but got {!r}".format(value))
    if result < 0:
        raise argparse.ArgumentTypeError("expected a non-negative integer, but got {!r}".format(value))
    return result


def comma_separated(values):
    result = []
    for value in values:
        result.extend(v for v in value.split(',') if v)
    return result


def make_parser():
    parser = argparse.ArgumentParser(prog='objdis', description='Object file disassembler producing llvm-objdump style listings')
    parser.add_argument('--version', action='version', version='%(prog)s {}'.format(VERSION_STRING))
    parser.add_argument('filenames', metavar='OBJFILE', nargs='*',
                        help="Object file(s) to dump (default: a.out)")
    parser.add_argument('--disassemble', '-d', action='store_true',
                        help="Display assembler mnemonics for the executable sections")
    parser.add_argument('--disassemble-all', '-D', action='store_true',
                        help="Display assembler mnemonics for all sections")
    parser.add_argument('--disassemble-symbols', metavar='SYMBOLS', action='append', default=[],
                        help="Only disassemble the given (comma separated) symbols.  Implies --disassemble")
    parser.add_argument('--disassemble-zeroes', '-z', action='store_true',
                        help="Do not skip blocks of zeroes when disassembling")
    parser.add_argument('--reloc', '-r', action='store_true',
                        help="Display the relocation entries in the file")
    parser.add_argument('--section', '-j', metavar='NAME', action='append', default=[],
                        help="Operate on the specified sections only (can be specified multiple times)")
    parser.add_argument('--start-address', metavar='ADDR', type=int_arg,
                        help="Disassemble beginning at address ADDR")
    parser.add_argument('--stop-address', metavar='ADDR', type=int_arg,
                        help="Stop disassembly at address ADDR")
    parser.add_argument('--adjust-vma', metavar='OFFSET', type=int_arg, default=0,
                        help="Increase the displayed address of loadable sections by OFFSET")
    parser.add_argument('--no-show-raw-insn', action='store_true',
                        help="Do not print the instruction bytes when disassembling")
    parser.add_argument('--no-leading-addr', action='store_true',
                        help="Do not print leading addresses")
    parser.add_argument('--demangle', '-C', action='store_true',
                        help="Demangle C++ symbol names")
    parser.add_argument('--symbolize-operands', action='store_true',
                        help="Symbolize instruction operands when disassembling (x86 only)")
    parser.add_argument('--debug-vars', nargs='?', const=DEBUG_VARS_UNICODE, choices=(DEBUG_VARS_UNICODE, DEBUG_VARS_ASCII),
                        help="Print the locations of source variables alongside the disassembly (default format: unicode)")
    parser.add_argument('--debug-vars-indent', metavar='N', type=int_arg, default=40,
                        help="Distance to indent the source-level variable display, relative to the start of the instruction text (default: 40)")
    parser.add_argument('--line-numbers', '-l', action='store_true',
                        help="Display source line numbers with the disassembly.  Implies --disassemble")
    parser.add_argument('--source', '-S', action='store_true',
                        help="Display source inlined with the disassembly.  Implies --disassemble")
    parser.add_argument('--prefix', metavar='PREFIX', default='',
                        help="Add PREFIX to absolute paths of source files")
    parser.add_argument('--prefix-strip', metavar='N', type=int_arg, default=0,
                        help="Strip N leading directories from absolute source paths (used with --prefix)")
    parser.add_argument('--triple', metavar='TRIPLE',
                        help="Target triple to disassemble for (default: from the object file)")
    parser.add_argument('--fixups', metavar='FIXUPFILE', type=str,
                       help="Load fixup info (manual symbols) from FIXUPFILE (default: ${})".format(FIXUPS_ENV_VAR))
    parser.add_argument('--hash', action='store_true',
                       help="Do not disassemble the files, just print their hashes")
    parser.add_argument('--verbose', '-v', action='count', default=0,
                       help="Increase output verbosity (can be specified multiple times)")
    parser.add_argument('--quiet', '-q', action='count', default=0,
                       help="Do not print info messages (use twice to also suppress warnings)")
    return parser


def options_from_args(args):
    disassemble_symbols = comma_separated(args.disassemble_symbols)
    disassemble = (args.disassemble or args.disassemble_all or args.source or args.line_numbers
                   or bool(disassemble_symbols))
    start_address = args.start_address if args.start_address is not None else 0
    stop_address = args.stop_address if args.stop_address is not None else UINT64_MAX
    return DisassemblyOptions(
        disassemble=disassemble,
        disassemble_all=args.disassemble_all,
        disassemble_symbols=frozenset(disassemble_symbols),
        disassemble_zeroes=args.disassemble_zeroes,
        relocations=args.reloc,
        filter_sections=tuple(args.section),
        start_address=start_address,
        stop_address=stop_address,
        has_start_address=args.start_address is not None,
        has_stop_address=args.stop_address is not None,
        adjust_vma=args.adjust_vma,
        show_raw_insn=not args.no_show_raw_insn,
        leading_addr=not args.no_leading_addr,
        symbolize_operands=args.symbolize_operands,
        demangle=args.demangle,
        debug_vars=args.debug_vars,
        debug_vars_indent=args.debug_vars_indent,
        print_lines=args.line_numbers,
        print_source=args.source,
        prefix=args.prefix.rstrip('/'),
        prefix_strip=args.prefix_strip,
        triple=args.triple,
    )


def load_fixups(fixups_file, filename):
    if not fixups_file:
        return None
    try:
        return Fixups.load_from_file(fixups_file, filename)
    except (FileNotFoundError, IOError) as e:
        log.error("Unable to read fixups file {!r}: {}".format(fixups_file, e))
    return None


def dump_input(filename, options, section_filter, fixups_file, out):
    "Dumps one input file.  Returns False if it had to be abandoned."
    fixups = load_fixups(fixups_file, filename)
    info(1, "Disassembling: {} (fixups={})".format(filename, fixups))
    try:
        f = open(filename, 'rb')
    except (FileNotFoundError, IOError) as e:
        log.error("'{}': {}".format(filename, e.strerror or e))
        return False
    with f:
        try:
            objfile = load_elf(filename, f)
            manual_symbols = fixups.make_symbols(objfile) if fixups else ()
            dump_object(objfile, options, section_filter, out, manual_symbols)
        except ObjectFormatError as e:
            out.flush()
            log.error(e)
            print_elf_format_error(filename, f)
            return False
    return True


def main(argv=None):
    h = logging.StreamHandler()
    h.setFormatter(SimpleFormatter())
    logging.root.addHandler(h)

    parser = make_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.root.setLevel(logging.DEBUG)
    elif args.quiet > 1:
        logging.root.setLevel(logging.ERROR)
    elif args.quiet:
        logging.root.setLevel(logging.WARNING)
    else:
        logging.root.setLevel(logging.INFO)
    util.info_level = args.verbose
    util.debug_level = args.verbose - 1

    filenames = args.filenames or ['a.out']

    if args.hash:
        for filename in filenames:
            print("filehash: {}".format(file_digest(filename)))
        sys.exit(0)

    options = options_from_args(args)
    if options.start_address >= options.stop_address:
        log.error("start address should be less than stop address")
        sys.exit(1)
    if not options.disassemble and not options.relocations:
        parser.print_help()
        sys.exit(2)

    fixups_file = args.fixups
    if not fixups_file:
        fixups_file = os.environ.get(FIXUPS_ENV_VAR, '')
        debug(3, "no fixups file specified.  {} environment setting is {!r}".format(FIXUPS_ENV_VAR, fixups_file))

    info(1, "objdis version {}".format(VERSION_STRING))
    info(1, "  options={}".format(options))
    info(1, "")

    out = FormattedOutput(sys.stdout)
    section_filter = SectionFilter(options.filter_sections)
    status = 0
    try:
        for filename in filenames:
            if not dump_input(filename, options, section_filter, fixups_file, out):
                status = 1
        out.flush()
        section_filter.warn_on_no_match()
    except BrokenPipeError:
        pass
    except NoTargetError as e:
        out.flush()
        log.error(e)
        sys.exit(1)
    sys.exit(status)


if __name__ == '__main__':
    main()
