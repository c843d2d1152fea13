"""
Default dbhub script for MongoDB: hands the connection URL to "mongosh".
See mysql.py for the contract build() must follow.
"""

import shlex


def build(state):
    return {
        "command_with_args": shlex.join(["mongosh", state.variables["dsn"]]),
        "again": False,
    }
