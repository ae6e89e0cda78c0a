DEFAULT_POLL_INTERVAL = 5.0
STARTING_PROGRESS = "starting job..."
FAILED_TASK_MARKER = "Task execution failed"
INTERRUPTED_TASK_MARKER = "Interrupted before completion"
