"""
This file contains an example of a consensus K-OPLS discriminant analysis on three
data blocks that describe the same samples. It demonstrates how to fit the model with
Monte Carlo cross-validation and a permutation test, how to inspect the contribution
of each block, and how to predict the class of new samples.

The code includes the following functions:
- `simulate_blocks`: A function to simulate data blocks in which only some variables
    separate two classes.

To run the example, execute the file.

Note: The code assumes the availability of the `consensus_kopls` package and its
dependencies.
"""

import numpy as np

from consensus_kopls import ConsensusOPLS, predict


def simulate_blocks(
    rng: np.random.Generator, N: int, shapes: dict[str, int]
) -> tuple[dict[str, np.ndarray], np.ndarray]:
    """
    Simulates one block per entry of `shapes`. The first tenth of the variables of
    each block is shifted by the class of the sample. The last block carries no
    class information.
    """
    y = np.repeat(["control", "case"], N // 2)
    shift = np.where(y == "case", 1.0, -1.0)[:, None]
    blocks = {}
    for i, (name, K) in enumerate(shapes.items()):
        X = rng.standard_normal((N, K))
        if i < len(shapes) - 1:
            X[:, : max(K // 10, 1)] += shift
        blocks[name] = X
    return blocks, y


if __name__ == "__main__":
    rng = np.random.default_rng(42)
    N = 40  # Number of samples.
    shapes = {"nmr": 200, "ms": 80, "clinical": 12}  # Number of variables per block.
    blocks, y = simulate_blocks(rng, N, shapes)

    # One Y-predictive component separates two classes. The number of Y-orthogonal
    # components is selected on the DQ2 of class-balanced Monte Carlo
    # cross-validation. The selection curve and the permutation test are
    # reproducible with random_state.
    consensus_opls = ConsensusOPLS(
        max_pcomp=1,
        max_ocomp=4,
        model_type="da",
        cv_type="mccvb",
        n_mc=50,
        cv_frac=3 / 4,
        kernel_type="linear",
        n_perm=20,
        n_jobs=-1,
        random_state=0,
        verbose=1,
    )
    model = consensus_opls.fit(blocks, y)

    print(f"Selected {model.n_ocomp} Y-orthogonal component(s).")
    print(f"DQ2 for 0 to {model.max_ocomp} Y-orthogonal components: {model.DQ2}")
    print(f"Cross-validated error rate: {model.cv.class_stats.error_rate:.3f}")
    print(f"Permutation p-values: {dict(model.perm_stats.p_values)}")

    # Block contributions have shape (blocks, components). Each column sums to one.
    for name, weight, contributions in zip(
        model.block_names, model.rv_weights, model.block_contributions
    ):
        print(
            f"{name}: RV weight {weight:.3f}, contributions "
            f"{dict(zip(model.component_names, np.round(contributions, 3)))}"
        )

    # The variables with the highest Y-predictive VIP in the first block.
    top_variables = np.argsort(-model.vip["nmr"][:, 0])[:10]
    print(f"Most important nmr variables: {top_variables}")

    # New samples are projected through the fitted model.
    new_blocks, new_y = simulate_blocks(rng, 10, shapes)
    prediction = predict(model, new_blocks)
    accuracy = np.mean(prediction.labels == new_y)
    print(f"Accuracy on new samples: {accuracy:.2f}")
    print(f"Class probabilities of the first new sample: {prediction.probabilities[0]}")
