import random

import pytest

from hydro import Lexer, LexError


def types(code):
    return [t.type for t in Lexer(code).tokens]


def test_keywords_identifiers_and_literals():
    toks = Lexer("let x1 = 42; exit(x1);").tokens
    assert [t.type for t in toks] == [
        'LET', 'ID', 'ASSIGN', 'NUMBER', 'END',
        'EXIT', 'LPAREN', 'ID', 'RPAREN', 'END',
    ]
    assert toks[1].value == 'x1'
    assert toks[3].value == '42'


def test_all_keywords():
    assert types("exit let if elif else") == ['EXIT', 'LET', 'IF', 'ELIF', 'ELSE']


def test_keyword_prefix_is_identifier():
    toks = Lexer("letter exits iff").tokens
    assert [(t.type, t.value) for t in toks] == [('ID', 'letter'), ('ID', 'exits'), ('ID', 'iff')]


def test_operators_and_punctuation():
    assert types("( ) { } ; = + - * /") == [
        'LPAREN', 'RPAREN', 'LBRACE', 'RBRACE', 'END',
        'ASSIGN', 'PLUS', 'MINUS', 'STAR', 'SLASH',
    ]


def test_digits_then_letters_split():
    toks = Lexer("12ab").tokens
    assert [(t.type, t.value) for t in toks] == [('NUMBER', '12'), ('ID', 'ab')]


def test_comments_are_skipped():
    code = "let a = 1; // trailing\n/* block\ncomment */ exit(a);"
    toks = Lexer(code).tokens
    assert [t.type for t in toks][:5] == ['LET', 'ID', 'ASSIGN', 'NUMBER', 'END']
    assert toks[5].type == 'EXIT'
    assert toks[5].lineno == 3


def test_division_is_not_a_comment():
    assert types("8 / 2") == ['NUMBER', 'SLASH', 'NUMBER']


def test_unterminated_block_comment_is_silent():
    toks = Lexer("exit(0); /* never closed\n exit(1);").tokens
    assert [t.type for t in toks] == ['EXIT', 'LPAREN', 'NUMBER', 'RPAREN', 'END']


def test_unknown_character_is_fatal():
    with pytest.raises(LexError) as exc:
        Lexer("let x = 1;\nlet y = 2 % 3;")
    assert exc.value.lineno == 2
    assert str(exc.value) == "Lexical error (line 2): Unexpected character '%'"


def test_underscore_is_not_an_identifier_character():
    with pytest.raises(LexError):
        Lexer("let my_var = 1;")


FRAGMENTS = ["let", "x", "=", "12", ";", "exit", "(", ")", "{", "}", "+", "*", "elif"]
FILLERS = [" ", "\n", "\t", "// note\n", "/* a\nb */", "/**/", "\n\n"]


@pytest.mark.parametrize("seed", range(25))
def test_token_line_matches_source_line(seed):
    rng = random.Random(seed)
    pieces = []
    expected = []
    line = 1
    for _ in range(40):
        frag = rng.choice(FRAGMENTS)
        pieces.append(frag)
        expected.append(line)
        filler = rng.choice(FILLERS)
        pieces.append(filler)
        line += filler.count("\n")
    toks = Lexer("".join(pieces)).tokens
    assert [t.lineno for t in toks] == expected
