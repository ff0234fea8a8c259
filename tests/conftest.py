# tests/conftest.py
"""
Shared protocol sources and fixtures for the protoknow test suite.
"""

import textwrap

import pytest

from protoknow.parser import parse_protocol


def _src(text: str) -> str:
    return textwrap.dedent(text).lstrip("\n")


# Key never leaves the wire: both assertions hold.
SCENARIO_ENC = _src("""
    roles: Alice, Bob
    shared K for Alice, Bob
    Alice -> Bob: c = Enc(K, M)
    assert secret(M)
    assert secret(K)
""")

# Bob sends the key in the clear; the adversary decrypts c.
SCENARIO_KEY_LEAK = _src("""
    roles: Alice, Bob
    shared K for Alice, Bob
    Alice -> Bob: c = Enc(K, M)
    Bob -> Alice: K
    assert secret(M)
    assert secret(K)
""")

SCENARIO_MAC = _src("""
    roles: Alice, Bob
    shared K for Alice, Bob
    Alice -> Bob: Mac(K, M)
    assert secret(M)
""")

SCENARIO_DOUBLE_COLON = _src("""
    roles: Alice, Bob
    shared K for Alice, Bob
    Alice -> Bob :: bad
""")

# Bob knows K because he authored a message under it, so he opens
# Alice's ciphertext; the adversary never learns K.
SCENARIO_RESTRICTED = _src("""
    roles: Alice, Bob
    shared K for Alice, Bob
    Bob -> Alice: d = Enc(K, N)
    Alice -> Bob: c = Enc(K, M)
    assert secret(M) for Alice
""")

# Alice authors M but only sends it encrypted.
AUTHORED_ONLY = _src("""
    roles: Alice, Bob
    shared K for Alice, Bob
    Alice -> Bob: c = Enc(K, M)
    assert secret(M) for Bob
""")

FULL_SYNTAX = _src("""
    // a protocol using every construct
    roles: Alice, Bob, Server
    shared Kas for Alice, Server
    public pkB for Bob
    private skB for Bob
    Alice -> Server: req = Enc(Kas, Na) || Alice
    Server -> Alice: Mac(Kas, Na || Nb)
    Bob -> Alice: s = Sign(skB, H(Nb))
    Alice -> Bob: Verify(pkB, H(Nb), s)
    assert secret(Na)
    assert secret(Nb) for Alice, Server
""")

CHAINED_KEYS = _src("""
    roles: Alice, Bob
    shared Kz for Alice, Bob
    Alice -> Bob: x = Enc(Kz, Ky)
    Alice -> Bob: y = Enc(Ky, Kx)
    Alice -> Bob: z = Enc(Kx, M_secret)
    Alice -> Bob: Kz
    assert secret(M_secret)
""")

ADVERSARY_ROLE = _src("""
    roles: Alice, Adversary
    shared K for Alice, Adversary
    Alice -> Adversary: c = Enc(K, M)
    assert secret(M)
""")


@pytest.fixture
def parse():
    return parse_protocol


@pytest.fixture
def write_proto(tmp_path):
    """Write protocol text to a file and return its path as a string."""
    def _write(text: str, name: str = "proto.txt") -> str:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return str(path)
    return _write
