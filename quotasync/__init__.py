# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""quotasync - keeps ResourceQuota hard limits in line with queue allocations"""

__version__ = "1.0.0"
