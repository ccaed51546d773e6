"""
Gradient of a 3x3 convolution layer with respect to its filter.

    python examples/convnet.py [--width W] [--height H] [--seed S]

Set DEBUG_EXECUTION in tensor_adjoints/config.py for progress output.
"""

import argparse
import time

import numpy as np

from tensor_adjoints import (
    Buffer,
    DType,
    Func,
    RDom,
    Var,
    cast,
    clamp,
    print_func,
    propagate_func_adjoints,
    realize,
)

def main():
    parser = argparse.ArgumentParser(description="Differentiate a conv layer")
    parser.add_argument("--width", type=int, default=16)
    parser.add_argument("--height", type=int, default=12)
    parser.add_argument("--seed", type=int, default=0)
    args = parser.parse_args()

    rng = np.random.RandomState(args.seed)
    image = rng.randint(0, 256, size=(args.width, args.height)).astype(np.uint8)

    x, y = Var("x"), Var("y")
    input_ = Buffer(image, "input")
    input_float = Func("input_float")
    input_float[x, y] = cast(DType.FP32, input_(x, y))

    clamped = Func("clamped")
    clamped[x, y] = input_float(
        clamp(x, 0, input_.width - 1), clamp(y, 0, input_.height - 1)
    )

    initial_weights = np.zeros((3, 3), dtype=np.float32)
    initial_weights[1, 1] = 1.0
    filter_ = Buffer(initial_weights, "filter")
    filter_func = Func("filter_func")
    filter_func[x, y] = filter_(x, y)

    r = RDom(0, 3, 0, 3)
    output = Func("output")
    output[x, y] = 0.0
    output[x, y] += clamped(x + r.x, y + r.y) * filter_func(r.x, r.y)
    print_func(output)

    start = time.time()
    adjoints = propagate_func_adjoints(
        output, output_bounds=[(0, input_.width), (0, input_.height)]
    )
    print(f"Differentiated in {time.time() - start:.3f}s")

    d_filter = adjoints["filter_func"]
    print_func(d_filter)

    start = time.time()
    result = realize(d_filter, [3, 3])
    print(f"Realized d(output)/d(filter) in {time.time() - start:.3f}s")
    print(result)

    # d(sum of output)/d(filter)(i, j) = sum of the clamped input shifted by (i, j)
    padded = np.pad(image.astype(np.float64), ((0, 2), (0, 2)), mode="edge")
    expected = np.array(
        [
            [padded[i : i + args.width, j : j + args.height].sum() for j in range(3)]
            for i in range(3)
        ]
    )
    np.testing.assert_allclose(result, expected, rtol=1e-4)
    print("Matches numpy reference.")


if __name__ == "__main__":
    main()
