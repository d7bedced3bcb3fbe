import numpy as np
import matplotlib.pyplot as plt

from nonlin_min import minimize


def rastrigin(p):
    return 10.0 * p.size + float(np.sum(p**2 - 10.0 * np.cos(2.0 * np.pi * p)))


# --- Anneal -------------------------------------------------------------------

settings = {
    "Algorithm": "siman",
    "lbound": [-3.0, -3.0],
    "ubound": [3.0, 3.0],
    "max_rand_step": [0.5, 0.5],
    "T_init": 10.0,
    "T_min": 1e-3,
    "mu_T": 1.02,
    "iters_fixed_T": 20,
    "trace_steps": True,
    "siman_log": True,
    "seed": 1,
}
res = minimize(rastrigin, np.array([2.5, -2.2]), settings)
print(res.summary(digits=4))

trace = res.outp["trace"]  # rows: outer, inner, objf, p1, p2
log = res.outp["siman_log"]  # rows: T, objf

# --- Plot ---------------------------------------------------------------------

fig, (ax0, ax1) = plt.subplots(1, 2, figsize=(10, 4))
ax0.plot(trace[:, 3], trace[:, 4], ".", ms=2, alpha=0.4, label="accepted state")
ax0.plot(res.p[0], res.p[1], "r*", ms=12, label="best")
ax0.set_xlabel("p1")
ax0.set_ylabel("p2")
ax0.legend()

ax1.semilogx(log[:, 0], log[:, 1])
ax1.invert_xaxis()
ax1.set_xlabel("temperature")
ax1.set_ylabel("objective")
fig.tight_layout()
plt.show()
