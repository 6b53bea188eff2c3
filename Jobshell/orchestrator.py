from Jobshell.executor import execute_pipeline
from Jobshell.grammar import AND, OR


def should_run(op, last_status):
    """Short-circuit rule for the pipeline after `op`, given the previous pipeline's status."""
    if op == AND:
        return last_status == 0
    if op == OR:
        return last_status != 0
    return True


def run_block(block, state, jobs, stdin=None, stdout=None, stderr=None):
    """
    Run the pipelines of one && / || chain strictly left to right.
    Operators have equal precedence: each one looks only at the status of
    the pipeline right before it, whether or not that pipeline ran.
    """
    status = 0
    for op, pipeline in block.pipelines():
        if not should_run(op, status):
            continue
        status = execute_pipeline(pipeline, state, jobs, stdin, stdout, stderr)
        state.set_status(status)
    return status


def run_command(command, state, jobs, stdin=None, stdout=None, stderr=None):
    """Run every block of a parsed line in order; the status is the last block's."""
    status = 0
    for block in command.blocks:
        status = run_block(block, state, jobs, stdin, stdout, stderr)
    return status
