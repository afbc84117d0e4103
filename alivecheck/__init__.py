"""
AliveCheck Safety Switch
========================

A personal-safety dead-man's switch.  The user affirms at a regular interval
that they are alive and well; silence well past the deadline, or an explicit
panic, raises an emergency that is handed once to an external channel for
broadcast to the user's guardians.

DISCLAIMER: This software does not guarantee delivery of emergency
notifications and does not verify the identity of the person checking in.
It is an assistive tool and does not replace emergency services.
"""

__version__ = "0.1.0"
