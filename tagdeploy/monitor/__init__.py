"""Terminal rendering of pipeline outcomes.

Modules
-------
renderer
    ``OutcomeRenderer`` turns ``ReleaseOutcome`` / ``BranchOutcome`` into
    Rich panels with the state-transition trail.
"""
