#
# PURPOSE:
# Walking a book and dispatching its nodes.
#
# MODULES IN THIS PACKAGE:
# - walker.py: Document-order walk, start_at filtering, visited guard, rollback
# - executor.py: Handler lookup shared by both modes
# - view.py / run.py: Markdown rendering and execution handlers
# - retry.py: The Assert retry loop
# - runner.py: One view or execution of a book, with the resume store around it
#
