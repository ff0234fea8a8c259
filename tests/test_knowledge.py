# tests/test_knowledge.py
"""
Tests for the knowledge analyzer: observation pass, decryption closure,
assertion verdicts and the report surface.
"""

import json

import pytest

from protoknow import ast as A
from protoknow.knowledge import (
    AnalyzerConfig,
    Constructor,
    KnowledgeAnalyzer,
    OpaqueTerm,
    Principal,
    _State,
    analyze,
    observe,
    principal_name,
)
from protoknow.parser import parse_protocol
from tests.conftest import (
    ADVERSARY_ROLE, AUTHORED_ONLY, CHAINED_KEYS, FULL_SYNTAX, SCENARIO_ENC,
    SCENARIO_KEY_LEAK, SCENARIO_MAC, SCENARIO_RESTRICTED,
)

ALL_SOURCES = [
    SCENARIO_ENC, SCENARIO_KEY_LEAK, SCENARIO_MAC, SCENARIO_RESTRICTED,
    AUTHORED_ONLY, FULL_SYNTAX, CHAINED_KEYS, ADVERSARY_ROLE,
]


def _run(src, **cfg):
    return analyze(parse_protocol(src), AnalyzerConfig(**cfg))


class TestOpaqueTerm:

    def test_enc_label(self):
        term = OpaqueTerm(Constructor.ENC, "K", ("M",), (True,))
        assert term.label() == "Enc(K, M)"
        assert str(term) == "Enc(K, M)"

    def test_hash_has_no_key(self):
        term = OpaqueTerm(Constructor.HASH, None, ("x || y",), (False,))
        assert term.label() == "H(x || y)"

    def test_concat_label(self):
        flat = OpaqueTerm(Constructor.CONCAT, None, ("a || b", "c"), (False, True))
        assert flat.label() == "a || b || c"
        nested = OpaqueTerm(Constructor.CONCAT, None, ("a", "b || c"), (True, False))
        assert nested.label() == "a || (b || c)"

    def test_value_equality(self):
        a = OpaqueTerm(Constructor.MAC, "K", ("M",), (True,))
        b = OpaqueTerm(Constructor.MAC, "K", ("M",), (True,))
        assert a == b
        assert len({a, b}) == 1


class TestObserverWalk:

    def test_identifier_is_visible(self):
        assert observe(A.Identifier("K")) == (("K",), ())

    def test_assign_exposes_target_only(self):
        body = A.Assign(A.Identifier("c"), A.Encrypt(A.Identifier("K"), A.Identifier("M")))
        atoms, opaque = observe(body)
        assert atoms == ("c",)
        assert opaque == (OpaqueTerm(Constructor.ENC, "K", ("M",), (True,)),)

    def test_assign_of_bare_identifier(self):
        atoms, opaque = observe(A.Assign(A.Identifier("c"), A.Identifier("M")))
        assert atoms == ("c", "M")
        assert opaque == ()

    def test_concat_is_one_opaque_term(self):
        body = A.Concat(A.Identifier("a"), A.Encrypt(A.Identifier("K"), A.Identifier("b")))
        atoms, opaque = observe(body)
        assert atoms == ()
        assert opaque == (OpaqueTerm(Constructor.CONCAT, None,
                                     ("a", "Enc(K, b)"), (True, False)),)

    def test_verify_keeps_both_arguments(self):
        body = A.Verify(A.Identifier("pk"), A.Identifier("m"), A.Identifier("s"))
        _, opaque = observe(body)
        assert opaque[0].inner == ("m", "s")
        assert opaque[0].key == "pk"


class TestScenarios:

    def test_encryption_without_key_leak(self):
        report = _run(SCENARIO_ENC)
        assert report.verdict_for("M").passed
        assert report.verdict_for("K").passed
        assert report.passed
        assert report.adversary.atomic == ("c",)
        assert report.catastrophic == ()

    def test_key_leak_breaks_both_assertions(self):
        report = _run(SCENARIO_KEY_LEAK)
        k, m = report.verdict_for("K"), report.verdict_for("M")
        assert not k.passed
        assert not m.passed
        assert Principal.ADVERSARY in m.leaked_to
        assert m.reason.startswith("adversary learned M")
        assert report.adversary.atomic == ("K", "M", "c")
        assert report.catastrophic == ("K",)
        assert not report.passed

    def test_mac_does_not_open(self):
        report = _run(SCENARIO_MAC)
        assert report.verdict_for("M").passed
        assert "M" not in report.adversary.atomic
        assert report.adversary.opaque == (
            OpaqueTerm(Constructor.MAC, "K", ("M",), (True,)),)

    def test_restricted_secrecy_violation(self):
        report = _run(SCENARIO_RESTRICTED)
        verdict = report.verdict_for("M")
        assert not verdict.passed
        assert verdict.leaked_to == ("Bob",)
        assert "Bob" in verdict.reason
        assert "M" not in report.adversary.atomic
        assert "M" in report.knowledge_of("Bob").learned

    def test_mac_does_not_open_even_with_key(self):
        src = "roles: A, B\nshared K for A, B\nA -> B: Mac(K, M)\nB -> A: K\nassert secret(M)"
        report = _run(src)
        assert report.verdict_for("M").passed
        assert "K" in report.adversary.atomic

    @pytest.mark.parametrize("body", ["H(M)", "Sign(K, M)", "Verify(K, M, M)", "M || N"])
    def test_one_way_constructors_never_reveal(self, body):
        src = (f"roles: A, B\nshared K for A, B\nA -> B: {body}\n"
               "B -> A: K\nassert secret(M)")
        report = _run(src)
        assert report.verdict_for("M").passed


class TestAuthoredKnowledge:

    def test_sender_knows_everything_it_sent(self):
        alice = _run(SCENARIO_ENC).knowledge_of("Alice")
        assert alice.atomic == ("K", "M", "c")
        assert alice.authored == ("K", "M", "c")
        assert alice.learned == ()

    def test_receiver_only_sees_the_wire(self):
        bob = _run(SCENARIO_ENC).knowledge_of("Bob")
        assert bob.atomic == ("c",)
        assert bob.authored == ()
        assert bob.opaque == (OpaqueTerm(Constructor.ENC, "K", ("M",), (True,)),)

    def test_authored_excluded_from_restricted_check_by_default(self):
        verdict = _run(AUTHORED_ONLY).verdict_for("M")
        assert verdict.passed
        assert verdict.reason == "known only to permitted roles"

    def test_authored_counted_when_requested(self):
        verdict = _run(AUTHORED_ONLY, count_authored_knowledge=True).verdict_for("M")
        assert not verdict.passed
        assert verdict.leaked_to == ("Alice",)

    def test_full_syntax_default_and_counted(self):
        assert _run(FULL_SYNTAX).passed
        counted = _run(FULL_SYNTAX, count_authored_knowledge=True)
        verdict = counted.verdict_for("Nb")
        assert not verdict.passed
        assert verdict.leaked_to == ("Bob",)


class TestSeededKeys:

    def test_owners_start_with_shared_key(self):
        report = _run(SCENARIO_MAC, seed_key_owners=True)
        assert "K" in report.knowledge_of("Bob").learned
        assert "K" not in report.adversary.atomic

    def test_seeded_receiver_decrypts(self):
        src = "roles: A, B\nshared K for A, B\nA -> B: Enc(K, M)\nassert secret(M) for A"
        assert _run(src).passed
        report = _run(src, seed_key_owners=True)
        assert not report.verdict_for("M").passed
        assert report.verdict_for("M").leaked_to == ("B",)

    def test_public_key_known_to_everyone(self):
        report = _run(FULL_SYNTAX, seed_key_owners=True)
        assert "pkB" in report.adversary.atomic
        assert "pkB" in report.knowledge_of("Server").atomic
        assert "skB" not in report.adversary.atomic
        assert "skB" in report.knowledge_of("Bob").learned
        assert report.catastrophic == ()

    def test_public_key_with_leak_prefix_is_not_catastrophic(self):
        src = ("roles: A, B\npublic K_pub for B\nprivate K_priv for B\n"
               "A -> B: Enc(K_pub, M)")
        report = _run(src, seed_key_owners=True)
        assert "K_pub" in report.adversary.atomic
        assert report.catastrophic == ()



class TestClosure:

    def test_chained_decryption(self):
        report = _run(CHAINED_KEYS)
        assert report.adversary.atomic == ("Kx", "Ky", "Kz", "M_secret", "x", "y", "z")
        assert report.iterations == 3
        assert report.catastrophic == ("Kz", "M_secret")
        assert not report.verdict_for("M_secret").passed

    def test_no_closure_work(self):
        assert _run(SCENARIO_MAC).iterations == 0

    def test_malformed_opaque_terms_are_skipped(self):
        analyzer = KnowledgeAnalyzer()
        state = _State(learned={"K"}, opaque={
            OpaqueTerm(Constructor.ENC, None, ("M",), (True,)),
            OpaqueTerm(Constructor.ENC, "K", ("M", "N"), (True, True)),
        })
        states = {Principal.ADVERSARY: state}
        assert analyzer._closure_pass([Principal.ADVERSARY], states) is False
        assert state.learned == {"K"}

    def test_non_atomic_plaintext_does_not_open(self):
        src = "roles: A, B\nshared K for A, B\nA -> B: Enc(K, x || y)\nB -> A: K\nassert secret(x)"
        report = _run(src)
        assert report.verdict_for("x").passed


class TestProperties:

    @pytest.mark.parametrize("src", ALL_SOURCES)
    def test_determinism(self, src):
        first = _run(src, record_history=True)
        second = _run(src, record_history=True)
        assert first == second
        assert json.dumps(first.to_dict()) == json.dumps(second.to_dict())

    @pytest.mark.parametrize("src", ALL_SOURCES)
    def test_monotonicity(self, src):
        history = _run(src, record_history=True).history
        assert len(history) >= 1
        for before, after in zip(history, history[1:]):
            for principal, atoms in before.items():
                assert atoms <= after[principal]

    @pytest.mark.parametrize("src", ALL_SOURCES)
    def test_termination_bound(self, src):
        proto = parse_protocol(src)
        assert analyze(proto).iterations <= len(proto.identifiers())

    @pytest.mark.parametrize("src", ALL_SOURCES)
    def test_history_length_matches_iterations(self, src):
        report = _run(src, record_history=True)
        assert len(report.history) == report.iterations + 1

    @pytest.mark.parametrize("src", ALL_SOURCES)
    def test_adversary_sees_the_wire(self, src):
        proto = parse_protocol(src)
        adv = analyze(proto).adversary
        for msg in proto.messages:
            atoms, opaque = observe(msg.body)
            assert set(atoms) <= set(adv.atomic)
            assert set(opaque) <= set(adv.opaque)

    @pytest.mark.parametrize("src", ALL_SOURCES)
    def test_opacity_soundness(self, src):
        proto = parse_protocol(src)
        report = analyze(proto)
        for pk in report.principals:
            wire = set()
            for msg in proto.messages:
                if pk.is_adversary or pk.principal == msg.receiver.name:
                    wire |= set(observe(msg.body)[0])
            opened = {t.inner[0] for t in pk.opaque
                      if t.constructor is Constructor.ENC and t.key in pk.atomic}
            assert set(pk.learned) <= wire | opened

    def test_unknown_key_keeps_plaintext_hidden(self):
        report = _run(SCENARIO_ENC)
        for pk in report.principals:
            if "K" not in pk.atomic:
                assert "M" not in pk.atomic


class TestAdversaryIdentity:

    def test_role_named_adversary_is_distinct(self):
        report = _run(ADVERSARY_ROLE)
        names = [pk.name for pk in report.principals]
        assert names == ["Alice", "Adversary", "Adversary"]
        role = report.knowledge_of("Adversary")
        assert not role.is_adversary
        assert report.adversary.is_adversary
        assert role is not report.adversary

    def test_seeded_role_decrypts_but_wire_adversary_does_not(self):
        report = _run(ADVERSARY_ROLE, seed_key_owners=True)
        assert "M" in report.knowledge_of("Adversary").atomic
        assert "M" not in report.adversary.atomic
        assert report.verdict_for("M").passed

    def test_principal_name(self):
        assert principal_name(Principal.ADVERSARY) == "Adversary"
        assert principal_name("Bob") == "Bob"

    def test_unknown_principal(self):
        with pytest.raises(KeyError):
            _run(SCENARIO_ENC).knowledge_of("Carol")


class TestConfig:

    def test_default_is_valid(self):
        assert AnalyzerConfig().validate() == []

    def test_empty_prefix_rejected(self):
        assert AnalyzerConfig(leak_prefixes=("K_", "")).validate() == ["invalid leak prefix ''"]

    def test_string_prefix_rejected(self):
        assert AnalyzerConfig(leak_prefixes="K_").validate()

    def test_analyzer_refuses_invalid_config(self):
        with pytest.raises(ValueError):
            KnowledgeAnalyzer(AnalyzerConfig(leak_prefixes=("",)))

    def test_custom_prefixes(self):
        src = "roles: A, B\nA -> B: secret_x\nA -> B: M_y"
        report = _run(src, leak_prefixes=("secret_",))
        assert report.catastrophic == ("secret_x",)

    def test_no_prefixes_only_keys(self):
        report = _run(SCENARIO_KEY_LEAK, leak_prefixes=())
        assert report.catastrophic == ("K",)


class TestReportSurface:

    def test_principal_order(self):
        report = _run(FULL_SYNTAX)
        assert [pk.name for pk in report.principals] == ["Alice", "Bob", "Server", "Adversary"]

    def test_verdict_for_unknown(self):
        with pytest.raises(KeyError):
            _run(SCENARIO_ENC).verdict_for("nope")

    def test_failures(self):
        report = _run(SCENARIO_KEY_LEAK)
        assert [v.term for v in report.failures] == ["M", "K"]

    def test_summary_text(self):
        assert _run(SCENARIO_ENC).summary() == (
            "=== Knowledge Summary ===\n"
            "Alice knows: [K, M, c]\n"
            "Bob knows: [c]\n"
            "Adversary knows: [c]\n"
            "No catastrophic leaks under this simple model.\n"
        )

    def test_summary_catastrophic(self):
        text = _run(SCENARIO_KEY_LEAK).summary()
        assert "*** Catastrophic for protocol: adversary learned [K] ***" in text

    def test_to_dict(self):
        data = _run(SCENARIO_KEY_LEAK).to_dict()
        adv = data["principals"][-1]
        assert adv["principal"] == "Adversary"
        assert adv["adversary"] is True
        assert adv["opaque"] == ["Enc(K, M)"]
        assert data["verdicts"][0]["leaked_to"] == ["Adversary"]
        assert data["passed"] is False
        assert data["iterations"] == 1
