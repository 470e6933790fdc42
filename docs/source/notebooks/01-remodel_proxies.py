# ---
# jupyter:
#   jupytext:
#     text_representation:
#       extension: .py
#       format_name: percent
#       format_version: '1.3'
#       jupytext_version: 1.16.2
#   kernelspec:
#     display_name: Python 3 (ipykernel)
#     language: python
#     name: python3
# ---

# %% nbsphinx="hidden"
import sys
sys.path.append('../../..')

# %% [markdown]
# # Remodel: Local Proxies for Remote Models
#
# Every object created here is a lightweight handle on an object living in a
# remote execution engine. Creating a proxy sends a `create` command; every
# later call waits for the engine to assign an identity, then sends one
# command addressed to that identity.

# %% [markdown]
# ## Client
#
# A `StreamTransport` talks to an engine exposed by a `CommandServer`.

# %%
from remodel.transport import StreamTransport

transport = StreamTransport.from_address("RemodelEngine@127.0.0.1:65432")

# %% [markdown]
# ## Building a model
#
# Layers are appended to the remote container right after it is created.

# %%
from remodel.model import Sequential, linear, relu, softmax

model = Sequential(transport, [
    linear(transport, 784, 128),
    relu(transport),
    linear(transport, 128, 10),
    softmax(transport),
])

await model.summary()

# %% [markdown]
# ## Training
#
# The engine runs the optimizer; `fit` drives it in chunks of `log_interval`
# batches and reports the loss between round trips.

# %%
import numpy as np
from remodel.model import cross_entropy_loss
from remodel.optim import SGD

x = np.random.normal(0, 1, (1000, 784))
y = np.eye(10)[np.random.randint(0, 10, 1000)]

optim = SGD(transport, await model.parameters(), lr=0.05)
loss = await model.fit(x, y, cross_entropy_loss(transport), optim, batch_size=32, iters=3, log_interval=10)

# %% [markdown]
# ## Without `await`
#
# `BlockingProxy` runs every call to completion, for plain scripts.

# %%
from remodel.blocking import BlockingProxy

blocking = BlockingProxy(model)
blocking.num_parameters()
