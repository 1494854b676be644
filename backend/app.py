from flask import Flask, request, jsonify
from flask_cors import CORS
import hydro

app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = 1024 * 1024
app.config.from_prefixed_env("HYDRO")
CORS(app)  # allow cross-origin requests

def expr_to_dict(handle, arena):
    """
    Serialize an expression with a work stack; fold trees lean left
    and may be deeper than the interpreter's recursion limit
    """
    root = {}
    work = [(handle, root)]
    while work:
        handle, d = work.pop()
        node = arena[handle]
        while isinstance(node, hydro.Expr):
            node = arena[node.var]
        d["type"] = type(node).__name__
        if isinstance(node, hydro.TermIntLit):
            d["value"] = int(node.value)
        elif isinstance(node, hydro.TermIdent):
            d["name"] = node.name
        elif isinstance(node, hydro.TermParen):
            d["expr"] = {}
            work.append((node.expr, d["expr"]))
        elif isinstance(node, hydro.BinExpr):
            d["op"] = node.op
            d["left"] = {}
            d["right"] = {}
            work.append((node.lhs, d["left"]))
            work.append((node.rhs, d["right"]))
    return root

def ast_to_dict(node, arena):
    """
    Serialize AST to dict recursively, resolving arena handles
    """
    if node is None:
        return None
    if isinstance(node, int):
        node = arena[node]
    d = {"type": type(node).__name__}
    if isinstance(node, (hydro.Program, hydro.Scope)):
        d["statements"] = [ast_to_dict(s, arena) for s in node.stmts]
    elif isinstance(node, hydro.StmtExit):
        d["expr"] = expr_to_dict(node.expr, arena)
    elif isinstance(node, (hydro.StmtLet, hydro.StmtReassign)):
        d["name"] = node.name
        d["expr"] = expr_to_dict(node.expr, arena)
    elif isinstance(node, (hydro.StmtIf, hydro.IfPredElif)):
        d["cond"] = expr_to_dict(node.expr, arena)
        d["scope"] = ast_to_dict(node.scope, arena)
        d["pred"] = ast_to_dict(node.pred, arena)
    elif isinstance(node, hydro.IfPredElse):
        d["scope"] = ast_to_dict(node.scope, arena)
    return d

def empty_response(errors):
    return {
        "tokens": [],
        "ast": {},
        "assembly": [],
        "exit_status": None,
        "runtime_error": None,
        "errors": errors,
    }

@app.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "ok"})

@app.route("/compile", methods=["POST"])
def compile_code():
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return jsonify(empty_response(["Request error: body must be a JSON object"])), 400
    code = data.get("code", "")
    if not isinstance(code, str):
        return jsonify(empty_response(["Request error: 'code' must be a string"])), 400
    try:
        result = hydro.compile_source(code)

        processed_tokens = [
            {"type": token.type, "value": token.value, "lineno": token.lineno}
            for token in result['tokens']
        ]

        ast_dict = ast_to_dict(result['ast'], result['arena']) if result['ast'] is not None else {}

        response = {
            "tokens": processed_tokens,
            "ast": ast_dict,
            "assembly": result['asm'].splitlines(),
            "exit_status": result['exit_status'],
            "runtime_error": result['runtime_error'],
            "errors": result['errors'],
        }
        return jsonify(response)
    except Exception as e:
        app.logger.exception("compile request failed")
        return jsonify(empty_response([f"Unexpected error: {str(e)}"])), 500

if __name__ == "__main__":
    app.run(debug=app.config.get("DEBUG", False))
