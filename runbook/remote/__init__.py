# PURPOSE:
# Everything needed to run a statement's command on its hosts.
#
# MODULES IN THIS PACKAGE:
# - ssh_config.py: Validated servers/parallelization/path/user/group/env/umask settings
# - transport.py: Remote command composition, local and ssh transports
# - dispatch.py: Sequential, parallel and grouped host fan-out with cancellation
#
