# ============================================================================
# runbookctl/__init__.py
# Command line front end for the runbook engine
# ============================================================================
