# tree.py
# Backward induction on a calibrated trinomial lattice.

from __future__ import annotations

import numpy as np

from .core import ValueDerivatives
from .errors import ConsistencyError
from .lattice import LatticeData
from .payoffs import TreeOptionFunction, expectation

__all__ = ["TrinomialTree"]


class TrinomialTree:
    """Values a payoff function on a lattice by backward induction.

    Only two layers are held at a time. With ``compute_derivative`` the
    sensitivity to spot is rolled back alongside the value by the chain
    rule: the terminal seed is ``payoff'(S) * dS/dspot``, and each step adds
    the move of the transition probabilities to the discounted expectation
    of the next layer's sensitivities. Knocked-out nodes carry none.

    How node values and probabilities move with spot is read from the
    lattice. A lattice without probability derivatives is treated as
    scaling with spot at fixed probabilities.
    """

    def option_price_adjoint(
        self,
        function: TreeOptionFunction,
        data: LatticeData,
        compute_derivative: bool = True,
    ) -> ValueDerivatives:
        n = data.number_of_steps
        if function.number_of_steps != n:
            raise ConsistencyError(
                f"payoff function has {function.number_of_steps} steps, lattice has {n}"
            )

        state = data.state_value_at_layer(n)
        values = function.payoff_at_expiry(state)
        if compute_derivative:
            deriv = function.payoff_derivative_at_expiry(state) * data.state_derivative_at_layer(n)

        for i in range(n - 1, -1, -1):
            df = data.discount_factor_at_layer(i)
            probs = data.probability_at_layer(i)
            state = data.state_value_at_layer(i)
            if compute_derivative:
                deriv = expectation(df, probs, deriv)
                prob_deriv = data.probability_derivative_at_layer(i)
                if prob_deriv is not None:
                    deriv = deriv + expectation(df, prob_deriv, values)
                deriv = np.where(function.knocked_out_nodes(state), 0.0, deriv)
            values = function.next_option_values(df, probs, state, values, i)

        if compute_derivative:
            return ValueDerivatives.of(values[0], deriv[0])
        return ValueDerivatives.of(values[0])
