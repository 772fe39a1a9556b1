"""Run the operator-bundle command line tool with `python -m operator_bundle`."""

from operator_bundle.tool.operator_bundle import main

if __name__ == "__main__":
    main()
