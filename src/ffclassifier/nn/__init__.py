"""Model building, objectives and the minibatch training loop.

The heavy lifting (autodiff, tensor execution, the SGD update rule) is torch's;
this package only composes layers, binds minibatches to inputs and drives updates.
"""
