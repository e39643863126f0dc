#!/usr/bin/env python3
#
# This script shows the basic steps of a typical drmplan session: distributing in-core data, building a logical expression,
# checkpointing it and inspecting what the planner did.
#
# Requirements: none. The session runs in-process on the local operator library.
#

# Step 0: imports
import numpy as np

import drmplan as dp
from drmplan import analysis

# Step 1: Session setup
# Non-local masters additionally require a Mahout installation (see make_session)
session = dp.make_session(app_name="basic-workflow")
rng = np.random.default_rng(42)
A = session.parallelize(rng.random((100, 4)), num_partitions=4)
B = session.parallelize(rng.random((100, 3)), num_partitions=4)

# Step 2: Expression setup
# Nothing is computed here. The expression is just a tree of logical operators.
gramian = A.t @ A
cross = A.t @ B
print(analysis.explain(dp.optimize(gramian)))
print(analysis.explain(dp.optimize(cross)))

# Step 3: Materialization
gramian_result = gramian.checkpoint()
cross_result = cross.checkpoint()
print(gramian_result.collect())
print(cross_result.collect())

# Step 4: Inspection
# The trace shows the physical operators that were actually invoked
print(session.library.trace.as_df())
session.close()
