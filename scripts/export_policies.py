#!/usr/bin/env python3
"""
Export the compiled row-level-security policies for the Tracker Access Layer.

Compiles the capability matrix into a SQL migration and writes it to a file
(or stdout). Refuses to export when the application tier would allow
something the data tier denies.
"""

import argparse
import sys
from pathlib import Path

from service_authorization.app.policy.compiler import compile_storage_policies, render_migration
from service_authorization.app.policy.consistency import check_consistency
from service_authorization.app.policy.matrix import CapabilityMatrix


def main() -> int:
    parser = argparse.ArgumentParser(description="Export compiled storage policies")
    parser.add_argument("--output", "-o", help="Write the migration to this file instead of stdout")
    parser.add_argument("--schema", default="public", help="Schema holding the tracker tables")
    parser.add_argument("--actor-expression", default="auth.uid()", help="SQL expression for the current actor id")
    parser.add_argument("--role-name", default="authenticated", help="Database role the policies apply to")
    args = parser.parse_args()

    matrix = CapabilityMatrix()
    policies = compile_storage_policies(
        matrix,
        actor_expression=args.actor_expression,
        schema=args.schema,
        role_name=args.role_name,
    )

    divergences = check_consistency(matrix, policies)
    if divergences:
        print(f"Refusing to export: {len(divergences)} divergence(s) between tiers", file=sys.stderr)
        for divergence in divergences[:20]:
            print(f"  - {divergence.describe()}", file=sys.stderr)
        return 1

    sql = render_migration(policies, schema=args.schema, actor_expression=args.actor_expression)
    if args.output:
        Path(args.output).write_text(sql)
        print(f"Wrote {len(policies)} policies to {args.output}", file=sys.stderr)
    else:
        sys.stdout.write(sql)
    return 0


if __name__ == "__main__":
    sys.exit(main())
