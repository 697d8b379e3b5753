"""Provenance Datalog engine: storage, compilation, evaluation and sessions.

Rules are evaluated bottom-up with semi-naive iteration, one stratum at a
time. Every tuple carries a tag from the session's provenance; alternative
derivations combine with add and joint premises with mult, so the same
program can compute plain answers, counts, shortest distances or exact
probabilities depending on the provenance chosen.

Key features:
- Pluggable provenances (see provlog.provenance)
- Stratified negation
- Foreign functions ($name(...)) and foreign predicates
- Incremental sessions that only revisit affected strata

Example usage:
    from provlog.engine import Context

    ctx = Context("topkproofs", k=3)
    ctx.add_program('''
        rel edge = {0.8::(0, 1), 0.9::(1, 2), 0.7::(0, 2)}
        rel path(a, b) = edge(a, b)
        rel path(a, c) = path(a, b), edge(b, c)
    ''')
    ctx.run()
    for prob, (a, b) in ctx.computed_relation("path"):
        print(f"path({a}, {b}) = {prob:.3f}")
"""

from .ast import (
    Atom,
    BinOp,
    Call,
    Const,
    Constraint,
    FactSet,
    ParsedProgram,
    Rule,
    TypeDecl,
    Var,
)
from .parser import (
    parse_declaration,
    parse_program,
    parse_rule,
)
from .store import (
    FactIdAllocator,
    FactView,
    Relation,
    RelationSchema,
    RelationStore,
    StoredFact,
)
from .foreign import (
    STANDARD_FUNCTIONS,
    STANDARD_PREDICATES,
    ForeignFunction,
    ForeignPredicate,
    ForeignRegistry,
    foreign_function,
    foreign_predicate,
)
from .compiler import (
    CompiledProgram,
    CompiledRule,
    Stratum,
    compile_program,
    compile_rule,
)
from .evaluator import (
    ForeignFactCache,
    SemiNaiveEvaluator,
    StratumResult,
)
from .context import (
    Context,
    QueryResult,
    RunResult,
    RunStatus,
)
from .loader import (
    ProgramLoader,
    ProgramSpec,
)

__all__ = [
    # AST
    "Atom",
    "BinOp",
    "Call",
    "Const",
    "Constraint",
    "FactSet",
    "ParsedProgram",
    "Rule",
    "TypeDecl",
    "Var",
    # Parser
    "parse_declaration",
    "parse_program",
    "parse_rule",
    # Store
    "FactIdAllocator",
    "FactView",
    "Relation",
    "RelationSchema",
    "RelationStore",
    "StoredFact",
    # Foreign interfaces
    "STANDARD_FUNCTIONS",
    "STANDARD_PREDICATES",
    "ForeignFunction",
    "ForeignPredicate",
    "ForeignRegistry",
    "foreign_function",
    "foreign_predicate",
    # Compilation
    "CompiledProgram",
    "CompiledRule",
    "Stratum",
    "compile_program",
    "compile_rule",
    # Evaluation
    "ForeignFactCache",
    "SemiNaiveEvaluator",
    "StratumResult",
    # Sessions
    "Context",
    "QueryResult",
    "RunResult",
    "RunStatus",
    # Loading
    "ProgramLoader",
    "ProgramSpec",
]
