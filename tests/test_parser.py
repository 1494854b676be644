import pytest

import hydro
from hydro import Arena, Lexer, Parser, ParseError


def parse(code):
    arena = Arena()
    program = Parser(Lexer(code).tokens, arena).parse()
    return arena, arena[program]


def shape(arena, handle):
    """Render an expression handle as nested tuples."""
    node = arena[handle]
    if isinstance(node, hydro.Expr):
        return shape(arena, node.var)
    if isinstance(node, hydro.BinExpr):
        return (node.op, shape(arena, node.lhs), shape(arena, node.rhs))
    if isinstance(node, hydro.TermIntLit):
        return int(node.value)
    if isinstance(node, hydro.TermIdent):
        return node.name
    if isinstance(node, hydro.TermParen):
        return ('paren', shape(arena, node.expr))
    raise AssertionError(node)


def exit_expr(code):
    arena, program = parse(code)
    stmt = arena[program.stmts[0]]
    assert isinstance(stmt, hydro.StmtExit)
    return shape(arena, stmt.expr)


@pytest.mark.parametrize("code, expected", [
    ("exit(1 + 2 * 3);", ('add', 1, ('mul', 2, 3))),
    ("exit(8 - 3 - 2);", ('sub', ('sub', 8, 3), 2)),
    ("exit(8 / 4 / 2);", ('div', ('div', 8, 4), 2)),
    ("exit((1 + 2) * 3);", ('mul', ('paren', ('add', 1, 2)), 3)),
    ("exit(1 * 2 + 3 * 4 - 5);", ('sub', ('add', ('mul', 1, 2), ('mul', 3, 4)), 5)),
    ("exit(a);", 'a'),
])
def test_expression_shapes(code, expected):
    assert exit_expr(code) == expected


def test_statement_kinds():
    arena, program = parse("let x = 1; x = 2; { exit(x); } if (x) { } elif (0) { } else { }")
    kinds = [type(arena[h]).__name__ for h in program.stmts]
    assert kinds == ['StmtLet', 'StmtReassign', 'Scope', 'StmtIf']


def test_predicate_chain_links():
    arena, program = parse("if (a) { } elif (b) { } elif (c) { } else { exit(1); }")
    stmt = arena[program.stmts[0]]
    first = arena[stmt.pred]
    second = arena[first.pred]
    last = arena[second.pred]
    assert isinstance(first, hydro.IfPredElif)
    assert isinstance(second, hydro.IfPredElif)
    assert isinstance(last, hydro.IfPredElse)
    assert shape(arena, second.expr) == 'c'
    assert len(arena[last.scope].stmts) == 1


def test_if_without_chain():
    arena, program = parse("if (1) { exit(2); }")
    assert arena[program.stmts[0]].pred is None


def test_empty_program():
    arena, program = parse("// nothing here\n")
    assert program.stmts == []


@pytest.mark.parametrize("code, message", [
    ("exit(1;", "Expected ')' after exit expression"),
    ("exit(1)", "Expected ';' after exit statement"),
    ("exit();", "Unable to parse expression in exit statement"),
    ("let x = ;", "Expected expression after '=' in let statement"),
    ("x = 1", "Expected ';' after assignment"),
    ("{ exit(1);", "Expected '}' to close scope"),
    ("if (1) exit(1);", "Expected scope after if condition"),
    ("if 1 { }", "Expected '(' after if"),
    ("if (1) { } elif (2) exit(0);", "Expected scope after elif condition"),
    ("if (1) { } else exit(0);", "Expected scope after else"),
    ("exit((1 + 2);", "Expected ')' after exit expression"),
    ("exit((1 + 2;", "Expected ')' to close parenthesised expression"),
    ("exit(1 + );", "Expected expression after 'add' operator"),
    ("let = 3;", "Invalid statement starting with LET"),
    ("else { }", "Invalid statement starting with ELSE"),
])
def test_parse_errors(code, message):
    with pytest.raises(ParseError) as exc:
        parse(code)
    assert exc.value.msg == message


def test_parse_error_reports_line():
    with pytest.raises(ParseError) as exc:
        parse("let a = 1;\n\nexit(a)\n")
    assert str(exc.value) == "Syntax error (line 3): Expected ';' after exit statement"


def test_nodes_live_in_the_arena():
    arena, program = parse("let x = 1 + 2;")
    # program, let, term 1, expr, term 2, expr, lhs copy, binary
    assert len(arena) == 8
