import numpy as np

from nonlin_min import AVAILABLE_BACKENDS, minimize


def rosenbrock(p):
    return float(100.0 * (p[1] - p[0] ** 2) ** 2 + (1.0 - p[0]) ** 2)


def rosenbrock_grad(p):
    return np.array(
        [
            -400.0 * p[0] * (p[1] - p[0] ** 2) - 2.0 * (1.0 - p[0]),
            200.0 * (p[1] - p[0] ** 2),
        ]
    )


p0 = np.array([-1.2, 1.0])

# Same problem, every backend. siman gets a small step and a fixed seed.
backend_settings = {
    "lm_feasible": {},
    "octave_sqp": {"MaxIter": 500},
    "d2_min": {},
    "siman": {"max_rand_step": 0.05, "T_init": 1.0, "mu_T": 1.05, "seed": 0},
}

for name in AVAILABLE_BACKENDS:
    settings = {"Algorithm": name, "objf_grad": rosenbrock_grad}
    settings.update(backend_settings[name])
    p, objf, cvg, outp = minimize(rosenbrock, p0, settings)
    print(f"{name:>12s}: p={np.round(p, 4)}, objf={objf:.3g}, cvg={cvg}, nobjf={outp['nobjf']}")
