import pytest

from objdis.util import demangle, dump_bytes, format_hex


@pytest.mark.parametrize('name,expected', [
    ('_Z3foov', 'foo()'),
    ('_ZN2ns4funcEv', 'ns::func()'),
    ('_Z3addii', 'add(int, int)'),
    ('main', 'main'),
    ('', ''),
])
def test_demangle(name, expected):
    assert demangle(name) == expected


def test_format_helpers():
    assert dump_bytes(b'\x90\xc3') == '90 c3'
    assert format_hex(0x1f, 6) == '0x001f'
    assert format_hex(0x1f, 1) == '0x1f'
