#!/usr/bin/env python3
"""
hydro.py
Single-file compiler pipeline for the Hydrogen toy language
(lexer → arena-backed recursive-descent parser → x86-64 NASM generator,
plus a small interpreter for the emitted assembly).

The language has one implicit integer type:

    let x = 5;
    if (x - 5) { exit(1); } elif (x) { x = x * 2; } else { exit(3); }
    exit(x / 2);

Every error is fatal: the first failure stops compilation.
"""

import logging
import re
import sys
from collections import namedtuple

LOGGER = logging.getLogger('hydro')

SLOT_WIDTH = 8          # bytes per stack slot (one qword)
SYS_EXIT = 60           # linux x86-64 exit syscall number
ARENA_BLOCK_SIZE = 4096 # nodes per arena block
ARENA_MAX_BLOCKS = None # None = grow on demand

# =====================================================
# ERRORS
# =====================================================
class CompileError(Exception):
    phase = "Compile"

    def __init__(self, msg, lineno=None):
        super().__init__(msg)
        self.msg = msg
        self.lineno = lineno

    def __str__(self):
        if self.lineno is not None:
            return f"{self.phase} error (line {self.lineno}): {self.msg}"
        return f"{self.phase} error: {self.msg}"

class LexError(CompileError):
    phase = "Lexical"

class ParseError(CompileError):
    phase = "Syntax"

class SemanticError(CompileError):
    phase = "Semantic"

class AllocationError(CompileError):
    phase = "Allocation"

class ExecutionError(CompileError):
    phase = "Runtime"

# =====================================================
# LEXER
# =====================================================
Token = namedtuple('Token', ['type', 'value', 'lineno'])

class Lexer:
    KEYWORDS = {'exit', 'let', 'if', 'elif', 'else'}
    token_specification = [
        ("COMMENT",   r'//[^\n]*'),
        ("MCOMMENT",  r'/\*[\s\S]*?(?:\*/|\Z)'),  # unterminated runs to end of input
        ("NUMBER",    r'[0-9]+'),
        ("ID",        r'[A-Za-z][A-Za-z0-9]*'),
        ("LPAREN",    r'\('),
        ("RPAREN",    r'\)'),
        ("LBRACE",    r'\{'),
        ("RBRACE",    r'\}'),
        ("END",       r';'),
        ("ASSIGN",    r'='),
        ("PLUS",      r'\+'),
        ("MINUS",     r'-'),
        ("STAR",      r'\*'),
        ("SLASH",     r'/'),
        ("NEWLINE",   r'\n'),
        ("SKIP",      r'[ \t\r\f\v]+'),
        ("MISMATCH",  r'.'),
    ]
    tok_regex = '|'.join(f'(?P<{n}>{p})' for n,p in token_specification)
    master_re = re.compile(tok_regex)

    def __init__(self, code):
        self.code = code
        self.lineno = 1
        self.tokens = []
        self._tokenize()

    def _tokenize(self):
        for mo in self.master_re.finditer(self.code):
            kind = mo.lastgroup
            val = mo.group()
            if kind == "ID":
                if val in Lexer.KEYWORDS:
                    self.tokens.append(Token(val.upper(), None, self.lineno))
                else:
                    self.tokens.append(Token('ID', val, self.lineno))
            elif kind == "NUMBER":
                self.tokens.append(Token('NUMBER', val, self.lineno))
            elif kind == "NEWLINE":
                self.lineno += 1
            elif kind == "MCOMMENT":
                self.lineno += val.count('\n')
            elif kind == "SKIP" or kind == "COMMENT":
                pass
            elif kind == "MISMATCH":
                raise LexError(f"Unexpected character {val!r}", self.lineno)
            else:
                self.tokens.append(Token(kind, None, self.lineno))

    def peek_all(self):
        return list(self.tokens)

# =====================================================
# ARENA
# =====================================================
class Arena:
    """
    Bump allocator owning every AST node of one compilation.

    Nodes live in a chain of fixed-size blocks and are addressed by integer
    handles. A block is never resized or moved once created, so a handle
    stays valid for the life of the arena. There is no per-node free.
    """

    def __init__(self, block_size=ARENA_BLOCK_SIZE, max_blocks=ARENA_MAX_BLOCKS):
        if block_size <= 0:
            raise ValueError("block_size must be positive")
        self.block_size = block_size
        self.max_blocks = max_blocks
        self.blocks = []
        self.count = 0

    def alloc(self, node):
        block_index, offset = divmod(self.count, self.block_size)
        if block_index == len(self.blocks):
            if self.max_blocks is not None and len(self.blocks) >= self.max_blocks:
                raise AllocationError(
                    f"arena exhausted ({self.max_blocks} blocks of {self.block_size} nodes)")
            self.blocks.append([None] * self.block_size)
        self.blocks[block_index][offset] = node
        handle = self.count
        self.count += 1
        return handle

    def __getitem__(self, handle):
        if not 0 <= handle < self.count:
            raise IndexError(f"invalid arena handle {handle}")
        block_index, offset = divmod(handle, self.block_size)
        return self.blocks[block_index][offset]

    def __len__(self):
        return self.count

    def capacity(self):
        return len(self.blocks) * self.block_size

# =====================================================
# AST NODES
# =====================================================
# Child fields hold arena handles (ints), never node objects.
class Node: pass

class TermIntLit(Node):
    def __init__(self, value, lineno=None):
        self.value = value  # digit text
        self.lineno = lineno

class TermIdent(Node):
    def __init__(self, name, lineno=None):
        self.name = name
        self.lineno = lineno

class TermParen(Node):
    def __init__(self, expr):
        self.expr = expr

class BinExpr(Node):
    def __init__(self, op, lhs, rhs):
        self.op = op  # 'add' | 'sub' | 'mul' | 'div'
        self.lhs = lhs
        self.rhs = rhs

class Expr(Node):
    def __init__(self, var):
        self.var = var  # handle of a term or a BinExpr

class StmtExit(Node):
    def __init__(self, expr, lineno=None):
        self.expr = expr
        self.lineno = lineno

class StmtLet(Node):
    def __init__(self, name, expr, lineno=None):
        self.name = name
        self.expr = expr
        self.lineno = lineno

class StmtReassign(Node):
    def __init__(self, name, expr, lineno=None):
        self.name = name
        self.expr = expr
        self.lineno = lineno

class Scope(Node):
    def __init__(self, stmts):
        self.stmts = stmts

class StmtIf(Node):
    def __init__(self, expr, scope, pred=None, lineno=None):
        self.expr = expr
        self.scope = scope
        self.pred = pred
        self.lineno = lineno

class IfPredElif(Node):
    def __init__(self, expr, scope, pred=None):
        self.expr = expr
        self.scope = scope
        self.pred = pred

class IfPredElse(Node):
    def __init__(self, scope):
        self.scope = scope

class Program(Node):
    def __init__(self, stmts):
        self.stmts = stmts

# =====================================================
# PARSER (recursive-descent, precedence climbing)
# =====================================================
BIN_OPS = {
    'PLUS':  ('add', 0),
    'MINUS': ('sub', 0),
    'STAR':  ('mul', 1),
    'SLASH': ('div', 1),
}

def bin_prec(token_type):
    entry = BIN_OPS.get(token_type)
    return entry[1] if entry else None

class Parser:
    def __init__(self, tokens, arena=None):
        self.tokens = list(tokens)
        self.pos = 0
        self.arena = arena if arena is not None else Arena()
        last_line = self.tokens[-1].lineno if self.tokens else 1
        if not self.tokens or self.tokens[-1].type != 'EOF':
            self.tokens.append(Token('EOF', '', last_line))

    def peek(self):
        return self.peek_n(0)

    def peek_n(self, n):
        idx = self.pos + n
        if idx < len(self.tokens):
            return self.tokens[idx]
        return self.tokens[-1]

    def advance(self):
        tok = self.peek()
        if tok.type != 'EOF':
            self.pos += 1
        return tok

    def expect(self, ttype, msg=None):
        tok = self.peek()
        if tok.type == ttype:
            return self.advance()
        raise ParseError(msg or f"Expected token {ttype} but got {tok.type}", tok.lineno)

    def accept(self, ttype):
        if self.peek().type == ttype:
            return self.advance()
        return None

    def parse(self):
        stmts = []
        while self.peek().type != 'EOF':
            s = self.statement()
            if s is None:
                tok = self.peek()
                raise ParseError(f"Invalid statement starting with {tok.type}", tok.lineno)
            stmts.append(s)
        return self.arena.alloc(Program(stmts))

    def statement(self):
        """Return a statement handle, or None when no statement starts here."""
        tok = self.peek()
        if tok.type == 'EXIT' and self.peek_n(1).type == 'LPAREN':
            self.advance()
            self.advance()
            expr = self.require_expr("Unable to parse expression in exit statement")
            self.expect('RPAREN', "Expected ')' after exit expression")
            self.expect('END', "Expected ';' after exit statement")
            return self.arena.alloc(StmtExit(expr, tok.lineno))
        if tok.type == 'LET' and self.peek_n(1).type == 'ID' and self.peek_n(2).type == 'ASSIGN':
            self.advance()
            name = self.advance().value
            self.advance()
            expr = self.require_expr("Expected expression after '=' in let statement")
            self.expect('END', "Expected ';' after let statement")
            return self.arena.alloc(StmtLet(name, expr, tok.lineno))
        if tok.type == 'ID' and self.peek_n(1).type == 'ASSIGN':
            name = self.advance().value
            self.advance()
            expr = self.require_expr("Expected expression after '=' in assignment")
            self.expect('END', "Expected ';' after assignment")
            return self.arena.alloc(StmtReassign(name, expr, tok.lineno))
        if tok.type == 'LBRACE':
            return self.scope()
        if tok.type == 'IF':
            self.advance()
            self.expect('LPAREN', "Expected '(' after if")
            expr = self.require_expr("Expected expression inside if condition")
            self.expect('RPAREN', "Expected ')' after if condition")
            scope = self.require_scope("Expected scope after if condition")
            pred = self.if_pred()
            return self.arena.alloc(StmtIf(expr, scope, pred, tok.lineno))
        return None

    def if_pred(self):
        if self.accept('ELIF'):
            self.expect('LPAREN', "Expected '(' after elif")
            expr = self.require_expr("Expected expression inside elif condition")
            self.expect('RPAREN', "Expected ')' after elif condition")
            scope = self.require_scope("Expected scope after elif condition")
            pred = self.if_pred()
            return self.arena.alloc(IfPredElif(expr, scope, pred))
        if self.accept('ELSE'):
            scope = self.require_scope("Expected scope after else")
            return self.arena.alloc(IfPredElse(scope))
        return None

    def scope(self):
        if not self.accept('LBRACE'):
            return None
        stmts = []
        while True:
            s = self.statement()
            if s is None:
                break
            stmts.append(s)
        self.expect('RBRACE', "Expected '}' to close scope")
        return self.arena.alloc(Scope(stmts))

    def require_scope(self, msg):
        scope = self.scope()
        if scope is None:
            raise ParseError(msg, self.peek().lineno)
        return scope

    def require_expr(self, msg):
        expr = self.expression()
        if expr is None:
            raise ParseError(msg, self.peek().lineno)
        return expr

    def expression(self, min_prec=0):
        term = self.term()
        if term is None:
            return None
        expr_lhs = self.arena.alloc(Expr(term))

        while True:
            prec = bin_prec(self.peek().type)
            if prec is None or prec < min_prec:
                break
            op_tok = self.advance()
            expr_rhs = self.expression(prec + 1)
            if expr_rhs is None:
                raise ParseError(f"Expected expression after '{BIN_OPS[op_tok.type][0]}' operator",
                                 op_tok.lineno)
            # re-home the accumulated left side so the caller's handle
            # now names the new operator node
            lhs_node = self.arena[expr_lhs]
            lhs_copy = self.arena.alloc(Expr(lhs_node.var))
            binary = self.arena.alloc(BinExpr(BIN_OPS[op_tok.type][0], lhs_copy, expr_rhs))
            lhs_node.var = binary

        return expr_lhs

    def term(self):
        tok = self.peek()
        if tok.type == 'NUMBER':
            self.advance()
            return self.arena.alloc(TermIntLit(tok.value, tok.lineno))
        if tok.type == 'ID':
            self.advance()
            return self.arena.alloc(TermIdent(tok.value, tok.lineno))
        if tok.type == 'LPAREN':
            self.advance()
            expr = self.require_expr("Expected expression inside parentheses")
            self.expect('RPAREN', "Expected ')' to close parenthesised expression")
            return self.arena.alloc(TermParen(expr))
        return None

# =====================================================
# CODE GENERATOR (x86-64, NASM syntax)
# =====================================================
Var = namedtuple('Var', ['name', 'stack_loc'])

class Generator:
    def __init__(self, program, arena):
        self.program = program
        self.arena = arena
        self.lines = []
        self.stack_size = 0
        self.vars = []
        self.scopes = []
        self.label_count = 0

    def emit(self, line):
        self.lines.append(f"    {line}")

    def push(self, operand):
        self.emit(f"push {operand}")
        self.stack_size += 1

    def pop(self, reg):
        self.emit(f"pop {reg}")
        self.stack_size -= 1

    def create_label(self):
        label = f"label{self.label_count}"
        self.label_count += 1
        return label

    def place_label(self, label):
        self.lines.append(f"{label}:")

    def lookup(self, name):
        for var in self.vars:
            if var.name == name:
                return var
        return None

    def slot_offset(self, var):
        return (self.stack_size - var.stack_loc - 1) * SLOT_WIDTH

    def begin_scope(self):
        self.scopes.append(len(self.vars))

    def end_scope(self):
        pop_count = len(self.vars) - self.scopes.pop()
        self.emit(f"add rsp, {pop_count * SLOT_WIDTH}")
        self.stack_size -= pop_count
        for _ in range(pop_count):
            self.vars.pop()

    def generate(self):
        program = self.arena[self.program]
        self.lines.append("global _start")
        self.lines.append("_start:")
        for stmt in program.stmts:
            self.gen_stmt(stmt)
        self.emit(f"mov rax, {SYS_EXIT}")
        self.emit("mov rdi, 0")
        self.emit("syscall")
        return '\n'.join(self.lines) + '\n'

    def gen_term(self, node):
        if isinstance(node, TermIntLit):
            self.emit(f"mov rax, {node.value}")
            self.push("rax")
        elif isinstance(node, TermIdent):
            var = self.lookup(node.name)
            if var is None:
                raise SemanticError(f"Undeclared identifier '{node.name}'", node.lineno)
            self.push(f"QWORD [rsp + {self.slot_offset(var)}]")
        else:
            raise TypeError(f"unknown term node {type(node).__name__}")

    def gen_bin_op(self, op):
        self.pop("rax")
        self.pop("rbx")
        if op == 'add':
            self.emit("add rax, rbx")
        elif op == 'sub':
            self.emit("sub rax, rbx")
        elif op == 'mul':
            self.emit("imul rbx")
        elif op == 'div':
            self.emit("cqo")
            self.emit("idiv rbx")
        else:
            raise TypeError(f"unknown binary operator {op!r}")
        self.push("rax")

    def gen_expr(self, handle):
        # explicit work stack: fold trees lean left and can be arbitrarily deep
        work = [('expr', handle)]
        while work:
            kind, item = work.pop()
            if kind == 'op':
                self.gen_bin_op(item)
                continue
            node = self.arena[item]
            if isinstance(node, Expr):
                node = self.arena[node.var]
            if isinstance(node, BinExpr):
                # rhs is emitted first, then lhs, then the operator
                work.append(('op', node.op))
                work.append(('expr', node.lhs))
                work.append(('expr', node.rhs))
            elif isinstance(node, TermParen):
                work.append(('expr', node.expr))
            else:
                self.gen_term(node)

    def gen_scope(self, handle):
        self.begin_scope()
        for stmt in self.arena[handle].stmts:
            self.gen_stmt(stmt)
        self.end_scope()

    def gen_stmt(self, handle):
        node = self.arena[handle]
        if isinstance(node, StmtExit):
            self.gen_expr(node.expr)
            self.emit(f"mov rax, {SYS_EXIT}")
            self.pop("rdi")
            self.emit("syscall")
        elif isinstance(node, StmtLet):
            if self.lookup(node.name) is not None:
                raise SemanticError(f"Duplicate identifier '{node.name}'", node.lineno)
            self.vars.append(Var(node.name, self.stack_size))
            self.gen_expr(node.expr)
        elif isinstance(node, StmtReassign):
            var = self.lookup(node.name)
            if var is None:
                raise SemanticError(f"Undeclared identifier '{node.name}'", node.lineno)
            self.gen_expr(node.expr)
            self.pop("rax")
            self.emit(f"mov QWORD [rsp + {self.slot_offset(var)}], rax")
        elif isinstance(node, Scope):
            self.gen_scope(handle)
        elif isinstance(node, StmtIf):
            end_label = self.gen_branch(node.expr, node.scope, node.pred, None)
            if end_label is not None:
                self.place_label(end_label)
        else:
            raise TypeError(f"unknown statement node {type(node).__name__}")

    def gen_branch(self, expr, scope, pred, end_label):
        # a zero condition skips to the next link of the chain
        self.gen_expr(expr)
        self.pop("rax")
        label = self.create_label()
        self.emit("test rax, rax")
        self.emit(f"jz {label}")
        self.gen_scope(scope)
        if pred is not None and end_label is None:
            end_label = self.create_label()
        if end_label is not None:
            self.emit(f"jmp {end_label}")
        self.place_label(label)
        if pred is not None:
            self.gen_pred(pred, end_label)
        return end_label

    def gen_pred(self, handle, end_label):
        node = self.arena[handle]
        if isinstance(node, IfPredElif):
            self.gen_branch(node.expr, node.scope, node.pred, end_label)
        elif isinstance(node, IfPredElse):
            self.gen_scope(node.scope)
        else:
            raise TypeError(f"unknown predicate node {type(node).__name__}")

# =====================================================
# ASSEMBLY INTERPRETER
# =====================================================
MASK64 = (1 << 64) - 1

def to_signed(value):
    value &= MASK64
    return value - (1 << 64) if value & (1 << 63) else value

def execute_asm(asm):
    """Run the instruction subset emitted by Generator and return the exit status."""
    program = []
    labels = {}
    for raw in asm.splitlines():
        line = raw.split(';', 1)[0].strip()
        if not line or line.startswith('global'):
            continue
        if line.endswith(':'):
            labels[line[:-1]] = len(program)
            continue
        parts = line.split(None, 1)
        args = [a.strip() for a in parts[1].split(',')] if len(parts) > 1 else []
        program.append((parts[0], args))

    regs = {'rax': 0, 'rbx': 0, 'rdx': 0, 'rdi': 0}
    stack = []
    slot_re = re.compile(r'^(?:QWORD\s+)?\[rsp(?:\s*\+\s*(-?\d+))?\]$')

    def slot_index(operand):
        mo = slot_re.match(operand)
        if mo is None:
            return None
        offset = int(mo.group(1) or 0)
        if offset < 0:
            raise ExecutionError(f"read above stack top at {operand}")
        index = len(stack) - 1 - offset // SLOT_WIDTH
        if offset % SLOT_WIDTH or index < 0:
            raise ExecutionError(f"bad stack access {operand}")
        return index

    def read(operand):
        if operand in regs:
            return regs[operand]
        index = slot_index(operand)
        if index is not None:
            return stack[index]
        try:
            return to_signed(int(operand))
        except ValueError:
            raise ExecutionError(f"unsupported operand {operand}") from None

    def write(operand, value):
        value = to_signed(value)
        if operand in regs:
            regs[operand] = value
            return
        index = slot_index(operand)
        if index is None:
            raise ExecutionError(f"cannot write to {operand}")
        stack[index] = value

    pc = 0
    zero = False
    while pc < len(program):
        op, args = program[pc]
        pc += 1
        if op == 'mov':
            write(args[0], read(args[1]))
        elif op == 'push':
            stack.append(read(args[0]))
        elif op == 'pop':
            if not stack:
                raise ExecutionError("pop from empty stack")
            write(args[0], stack.pop())
        elif op == 'add' and args[0] == 'rsp':
            for _ in range(int(args[1]) // SLOT_WIDTH):
                stack.pop()
        elif op == 'add':
            write(args[0], read(args[0]) + read(args[1]))
        elif op == 'sub':
            write(args[0], read(args[0]) - read(args[1]))
        elif op == 'imul':
            write('rax', regs['rax'] * read(args[0]))
        elif op == 'cqo':
            regs['rdx'] = -1 if regs['rax'] < 0 else 0
        elif op == 'idiv':
            divisor = read(args[0])
            if divisor == 0:
                raise ExecutionError("division by zero")
            dividend = regs['rax']
            quotient = abs(dividend) // abs(divisor)
            if (dividend < 0) != (divisor < 0):
                quotient = -quotient
            write('rax', quotient)
            write('rdx', dividend - quotient * divisor)
        elif op == 'test':
            zero = (read(args[0]) & read(args[1])) == 0
        elif op == 'jz':
            if zero:
                pc = labels[args[0]]
        elif op == 'jmp':
            pc = labels[args[0]]
        elif op == 'syscall':
            if regs['rax'] == SYS_EXIT:
                return regs['rdi'] & 0xFF
            raise ExecutionError(f"unsupported syscall {regs['rax']}")
        else:
            raise ExecutionError(f"unsupported instruction {op}")
    raise ExecutionError("program ran past its last instruction")

# =====================================================
# COMPILER DRIVER
# =====================================================
def run_stages(code, result, arena=None):
    """
    Lex, parse and generate into `result`, stage by stage.

    Raises CompileError on the first failure; fields of stages that
    completed before it stay filled in.
    """
    try:
        LOGGER.debug("lexing %d characters", len(code))
        tokens = Lexer(code).peek_all()
        result['tokens'] = tokens

        LOGGER.debug("parsing %d tokens", len(tokens))
        arena = arena if arena is not None else Arena()
        result['arena'] = arena
        program = Parser(tokens, arena).parse()
        result['ast'] = program

        LOGGER.debug("generating code for %d nodes", len(arena))
        result['asm'] = Generator(program, arena).generate()
    except RecursionError:
        raise CompileError("program nests too deeply") from None
    return result['asm']

def new_result():
    return {
        'tokens': [],
        'ast': None,
        'arena': None,
        'asm': '',
        'exit_status': None,
        'errors': [],
        'runtime_error': None,
    }

def compile_to_asm(code, arena=None):
    """Lex, parse and generate; raises CompileError on the first failure."""
    return run_stages(code, new_result(), arena)

def compile_source(code, verbose=False, execute=True):
    result = new_result()

    try:
        asm = run_stages(code, result)
    except CompileError as exc:
        LOGGER.info("%s", exc)
        result['errors'] = [str(exc)]
        return result

    if execute:
        try:
            result['exit_status'] = execute_asm(asm)
        except ExecutionError as exc:
            LOGGER.info("%s", exc)
            result['runtime_error'] = str(exc)

    if verbose:
        print(asm, end='')
    return result

# =====================================================
# TEST PROGRAM
# =====================================================
TEST_PROGRAM = r'''
// sample program
let x = 1 + 2 * 3;   /* 7 */
let y = (8 - 3 - 2);
if (x - 7) {
    exit(1);
} elif (y - 3) {
    exit(2);
} else {
    x = x * y;
}
exit(x);
'''

def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if argv:
        with open(argv[0], 'r') as f:
            code = f.read()
    else:
        code = TEST_PROGRAM
    try:
        asm = compile_to_asm(code)
    except CompileError as exc:
        print(exc, file=sys.stderr)
        return 1
    sys.stdout.write(asm)
    return 0

if __name__ == '__main__':
    sys.exit(main())
