import collections

import capstone
from capstone import x86 as cs_x86

from .util import debug, NoTargetError

DECODE_SUCCESS = 'success'
DECODE_SOFT_FAIL = 'soft_fail'
DECODE_FAIL = 'fail'

DecodeResult = collections.namedtuple('DecodeResult', 'instruction size status comment')
DecodeResult.__new__.__defaults__ = ('',)


def _cs(name, default=None):
    # Constant names differ between capstone releases (ARM64 became AARCH64 in 6.0).
    return getattr(capstone, name, default)

CS_ARCH_AARCH64 = _cs('CS_ARCH_AARCH64', _cs('CS_ARCH_ARM64'))
CS_ARCH_SYSTEMZ = _cs('CS_ARCH_SYSTEMZ', _cs('CS_ARCH_SYSZ'))

# arch -> (capstone arch, mode, size consumed by an undecodable instruction)
ARCH_TABLE = {
    'x86': (capstone.CS_ARCH_X86, capstone.CS_MODE_32, 1),
    'x86_64': (capstone.CS_ARCH_X86, capstone.CS_MODE_64, 1),
    'arm': (capstone.CS_ARCH_ARM, capstone.CS_MODE_ARM, 4),
    'thumb': (capstone.CS_ARCH_ARM, capstone.CS_MODE_THUMB, 2),
    'aarch64': (CS_ARCH_AARCH64, capstone.CS_MODE_ARM, 4),
    'mips': (capstone.CS_ARCH_MIPS, capstone.CS_MODE_MIPS32, 4),
    'mips64': (capstone.CS_ARCH_MIPS, capstone.CS_MODE_MIPS64, 4),
    'ppc': (capstone.CS_ARCH_PPC, capstone.CS_MODE_32, 4),
    'ppc64': (capstone.CS_ARCH_PPC, capstone.CS_MODE_64, 4),
    'sparc': (capstone.CS_ARCH_SPARC, 0, 4),
    'sparcv9': (capstone.CS_ARCH_SPARC, _cs('CS_MODE_V9', 0), 4),
    's390x': (CS_ARCH_SYSTEMZ, 0, 2),
    'riscv32': (_cs('CS_ARCH_RISCV'), _cs('CS_MODE_RISCV32', 0) | _cs('CS_MODE_RISCVC', 0), 2),
    'riscv64': (_cs('CS_ARCH_RISCV'), _cs('CS_MODE_RISCV64', 0) | _cs('CS_MODE_RISCVC', 0), 2),
    'bpfel': (_cs('CS_ARCH_BPF'), _cs('CS_MODE_BPF_EXTENDED', 0), 8),
    'bpfeb': (_cs('CS_ARCH_BPF'), _cs('CS_MODE_BPF_EXTENDED', 0), 8),
}

# Triple arch components which name the same decoder
TRIPLE_ARCH_ALIASES = {
    'amd64': 'x86_64',
    'x86-64': 'x86_64',
    'i386': 'x86',
    'i486': 'x86',
    'i586': 'x86',
    'i686': 'x86',
    'arm64': 'aarch64',
    'aarch64_be': 'aarch64',
    'powerpc': 'ppc',
    'powerpc64': 'ppc64',
    'powerpc64le': 'ppc64',
    'ppc64le': 'ppc64',
    'mipsel': 'mips',
    'mips64el': 'mips64',
    'bpf': 'bpfel',
    'systemz': 's390x',
}

# ARM M-profile cores only have Thumb
MCLASS_SUBARCHES = ('v6m', 'v6sm', 'v7m', 'v7em', 'v8m', 'v8.1m')


class CapstoneDecoder:
    def __init__(self, cs_arch, cs_mode, fail_size=1):
        self.cs = capstone.Cs(cs_arch, cs_mode)
        self.cs.detail = True
        self.fail_size = fail_size

    def decode(self, data, address):
        for insn in self.cs.disasm(bytes(data), address, 1):
            return DecodeResult(insn, insn.size, DECODE_SUCCESS)
        return DecodeResult(None, min(self.fail_size, max(len(data), 1)), DECODE_FAIL)


def _operands(insn):
    try:
        return insn.operands
    except capstone.CsError:
        # Some architectures have no operand details in some capstone builds.
        return ()


class CapstoneAnalyzer:
    "Works out branch targets and PC-relative memory operands from capstone's instruction details."

    def __init__(self, is_x86=False, address_mask=(1 << 64) - 1):
        self.is_x86 = is_x86
        self.address_mask = address_mask

    def evaluate_branch(self, insn, address, size):
        if not (insn.group(capstone.CS_GRP_JUMP) or insn.group(capstone.CS_GRP_CALL)):
            return None
        for op in _operands(insn):
            if op.type == capstone.CS_OP_IMM:
                return op.imm & self.address_mask
        return None

    def evaluate_memory_operand_address(self, insn, address, size):
        if not self.is_x86:
            return None
        for op in _operands(insn):
            if op.type != cs_x86.X86_OP_MEM:
                continue
            mem = op.mem
            if mem.base == cs_x86.X86_REG_RIP and mem.index == 0 and mem.segment == 0:
                return (address + size + mem.disp) & self.address_mask
        return None


class CapstonePrinter:
    def __init__(self, analyzer=None):
        self.analyzer = analyzer

    def print_inst(self, insn, address, labels=None):
        op_str = insn.op_str
        if labels and self.analyzer is not None:
            target = self.analyzer.evaluate_branch(insn, insn.address, insn.size)
            label = labels.get(target) if target is not None else None
            if label is not None:
                op_str = '<{}>'.format(label)
        if op_str:
            return '\t{}\t{}'.format(insn.mnemonic, op_str)
        return '\t{}'.format(insn.mnemonic)


class Target:
    "Primary and optional secondary (Thumb/ARM) capstone decoders, with the printer and branch analyzer for one architecture."
    def __init__(self, arch, primary, printer, analyzer=None, secondary=None, primary_is_thumb=False):
        self.arch = arch
        self.primary = primary
        self.secondary = secondary
        self.printer = printer
        self.analyzer = analyzer
        self.primary_is_thumb = primary_is_thumb

    @property
    def is_x86(self):
        return self.arch in ('x86', 'x86_64')

    def __repr__(self):
        return '<Target {}{}>'.format(self.arch, ' (+secondary)' if self.secondary else '')


def _strip_endian(subarch):
    if subarch.endswith('eb'):
        return subarch[:-2]
    return subarch


def parse_triple(triple):
    "Returns (arch, is_thumb, is_mclass) for a target triple like 'thumbv7m-none-eabi'."
    arch = triple.split('-')[0].lower()
    if arch.startswith('thumb'):
        sub = _strip_endian(arch[len('thumb'):])
        return ('arm', True, sub in MCLASS_SUBARCHES)
    if arch.startswith('arm') and arch != 'arm64':
        sub = _strip_endian(arch[len('arm'):])
        return ('arm', False, sub in MCLASS_SUBARCHES)
    return (TRIPLE_ARCH_ALIASES.get(arch, arch), False, False)


def _make_decoder(arch, big_endian):
    cs_arch, mode, fail_size = ARCH_TABLE[arch]
    if big_endian:
        mode |= capstone.CS_MODE_BIG_ENDIAN
    return CapstoneDecoder(cs_arch, mode, fail_size)


def lookup_target(objfile, triple=None):
    """Builds the Target for 'objfile', optionally overriding its architecture with a triple.

    Raises NoTargetError if capstone has no decoder for the architecture.
    """
    is_thumb = False
    is_mclass = False
    if triple:
        arch, is_thumb, is_mclass = parse_triple(triple)
    else:
        arch = objfile.arch
    big_endian = not objfile.little_endian
    if arch in ('armeb', 'thumb'):
        is_thumb = is_thumb or arch == 'thumb'
        arch = 'arm'
    name = triple or arch
    if arch not in ARCH_TABLE or ARCH_TABLE[arch][0] is None:
        raise NoTargetError("'{}': can't find target: no disassembler for target {}".format(objfile.filename, name))
    debug(1, "Using capstone target {} ({}-endian)".format(name, 'big' if big_endian else 'little'))

    address_mask = (1 << (objfile.bytes_in_address * 8)) - 1
    analyzer = CapstoneAnalyzer(arch in ('x86', 'x86_64'), address_mask)
    printer = CapstonePrinter(analyzer)
    secondary = None
    if arch == 'arm':
        arm = _make_decoder('arm', big_endian)
        thumb = _make_decoder('thumb', big_endian)
        if is_thumb or is_mclass:
            primary = thumb
        else:
            primary = arm
        if objfile.is_elf and not is_mclass:
            secondary = arm if primary is thumb else thumb
        return Target(arch, primary, printer, analyzer, secondary, primary_is_thumb=primary is thumb)
    return Target(arch, _make_decoder(arch, big_endian), printer, analyzer)
