"""opsdeck -- Local operations dashboard for an agent runtime.

This package supervises an external agent runtime (its CLI binary and
gateway) and exposes interactive process sessions over HTTP and
Server-Sent Events. Terminal shells, doctor runs and QR pairing logins
all run as owned child processes whose output is buffered and fanned
out to any number of live viewers.
"""

__version__ = "0.1.0"
