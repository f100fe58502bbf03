"""
sda_automation -- scheduled billing cycle and request handlers.

Drives the kernel on behalf of an external trigger: the run guard owns
transaction boundaries, the summary module renders run narratives, the
notifications module delivers them, and the handlers wrap every operation
in an ``ApiResponse`` envelope.
"""
