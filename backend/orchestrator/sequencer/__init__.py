from orchestrator.sequencer.contract import SequenceCheck, check, expected_slot, progress_label, summary_due

__all__ = ["SequenceCheck", "check", "expected_slot", "progress_label", "summary_due"]
