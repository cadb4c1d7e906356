"""
Approval Kernel

Multi-step approval workflow engine for HR and procurement documents:
- Versioned, immutable workflow definitions per page (document type)
- Ordered approval steps with user or role-resolved approvers
- Time-bounded delegation, escalation and auto-approval
- Race-free action processing with single-rejection veto
- Document status synchronisation and edit-lock rules
"""

__version__ = "0.1.0"
