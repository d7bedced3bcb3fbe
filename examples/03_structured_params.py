import numpy as np

from nonlin_min import minimize

# Named parameters: a scalar "scale" and a 3-vector "w". All functions take
# and return mappings, so the parameter order is taken from the mapping.

target = np.array([1.0, -2.0, 0.5])


def objective(p):
    return float(np.sum((p["scale"] * p["w"] - target) ** 2) + (p["scale"] - 2.0) ** 2)


def gradient(p):
    r = p["scale"] * p["w"] - target
    return {
        "scale": 2.0 * float(r @ p["w"]) + 2.0 * (p["scale"] - 2.0),
        "w": 2.0 * p["scale"] * r,
    }


# sum(w) >= 0 as a linear constraint given per parameter name
inequc = {"matrix": {"w": np.ones((3, 1))}, "offset": [0.0]}

settings = {
    "objf_pstruct": True,
    "objf_grad": gradient,
    "inequc": inequc,
    "param_config": {"scale": {"lbound": 0.5, "ubound": 4.0}},
    "Algorithm": "octave_sqp",
}
res = minimize(objective, {"scale": 1.0, "w": np.zeros(3)}, settings)
print(res.summary(digits=5))

p = res.p
assert res.success
assert np.sum(p["w"]) >= -1e-8
