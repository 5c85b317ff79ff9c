"""EMT Trainer: adaptive practice and timed exam engine."""
