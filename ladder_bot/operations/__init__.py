"""
Operations Layer

Business rules for the challenge ladder, composed over the services layer:
- rank_policy: who may challenge whom (pure)
- challenge_operations: ChallengeLifecycleManager, the issue/extend/cancel/report state machine
- expiry_reconciler: ExpiryReconciler, event-driven and sweep-based auto-null plus startup sync
- challenge_diagnostics: read-only pairing and date inspection
"""
