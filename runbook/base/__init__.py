# PURPOSE:
# Foundational pieces every other runbook module depends on.
#
# WHAT'S IN THIS PACKAGE:
# - config.py: Engine configuration (ssh defaults, assert defaults, state dir, logging)
# - context.py: ExecutionContext and the shared Glue cell
# - position.py: Dotted positions used for ordering, skipping and resuming
#
