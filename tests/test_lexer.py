# tests/test_lexer.py
"""
Tests for the tokeniser: protocol text → Token list.
"""

from protoknow.lexer import KEYWORDS, Token, TokType, tokenise


def _types(text):
    return [t.type for t in tokenise(text)]


class TestTokeniseBasics:

    def test_empty_input_is_just_eof(self):
        toks = tokenise("")
        assert toks == [Token(TokType.EOF, "", 1)]

    def test_whitespace_only(self):
        assert _types("  \t \n ") == [TokType.EOF]

    def test_eof_carries_last_line(self):
        toks = tokenise("a\nb\n")
        assert toks[-1].type is TokType.EOF
        assert toks[-1].line == 3

    def test_identifiers(self):
        toks = tokenise("Alice n_1 2fa")
        assert [(t.type, t.text) for t in toks[:-1]] == [
            (TokType.IDENT, "Alice"),
            (TokType.IDENT, "n_1"),
            (TokType.IDENT, "2fa"),
        ]

    def test_keywords(self):
        for word, tt in KEYWORDS.items():
            assert tokenise(word)[0].type is tt

    def test_keywords_are_case_sensitive(self):
        assert tokenise("enc")[0].type is TokType.IDENT
        assert tokenise("Roles")[0].type is TokType.IDENT
        assert tokenise("h")[0].type is TokType.IDENT

    def test_keyword_prefix_is_identifier(self):
        tok = tokenise("Encrypted")[0]
        assert tok.type is TokType.IDENT
        assert tok.text == "Encrypted"


class TestTokeniseOperators:

    def test_punctuation(self):
        assert _types("-> || : , = ( )") == [
            TokType.ARROW, TokType.CONCAT, TokType.COLON, TokType.COMMA,
            TokType.EQUAL, TokType.LPAREN, TokType.RPAREN, TokType.EOF,
        ]

    def test_no_spaces_needed(self):
        assert _types("A->B:Enc(K,M)") == [
            TokType.IDENT, TokType.ARROW, TokType.IDENT, TokType.COLON,
            TokType.ENC, TokType.LPAREN, TokType.IDENT, TokType.COMMA,
            TokType.IDENT, TokType.RPAREN, TokType.EOF,
        ]

    def test_lone_dash_becomes_identifier(self):
        toks = tokenise("A - B")
        assert toks[1] == Token(TokType.IDENT, "-", 1)

    def test_lone_pipe_becomes_identifier(self):
        toks = tokenise("a | b")
        assert toks[1].type is TokType.IDENT
        assert toks[1].text == "|"

    def test_unknown_characters_never_raise(self):
        toks = tokenise("@#$;")
        assert [t.text for t in toks[:-1]] == ["@", "#", "$", ";"]
        assert all(t.type is TokType.IDENT for t in toks[:-1])


class TestTokeniseLinesAndComments:

    def test_line_numbers(self):
        toks = tokenise("roles: A\n\nA -> B: x")
        assert toks[0].line == 1
        arrow = next(t for t in toks if t.type is TokType.ARROW)
        assert arrow.line == 3

    def test_comment_skipped(self):
        assert _types("// nothing here") == [TokType.EOF]

    def test_comment_to_end_of_line(self):
        toks = tokenise("a // b c\nd")
        assert [t.text for t in toks[:-1]] == ["a", "d"]
        assert toks[1].line == 2

    def test_comment_mid_line_keeps_line_count(self):
        toks = tokenise("// one\n// two\nx")
        assert toks[0].line == 3


class TestTokenDescribe:

    def test_describe_eof(self):
        assert Token(TokType.EOF, "", 4).describe() == "end of input"

    def test_describe_text(self):
        assert Token(TokType.ARROW, "->", 1).describe() == "'->'"
